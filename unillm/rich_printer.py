"""
Rich printer module for displaying conversations and completion responses.
"""
import dataclasses
import json
from typing import Any, Optional

from rich.console import Console, Group
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from .types import CompletionResponse, Conversation, Message, Role

ROLE_STYLES = {
    Role.SYSTEM: "magenta",
    Role.USER: "blue",
    Role.ASSISTANT: "green",
    Role.TOOL_CALL: "yellow",
    Role.TOOL_RESULT: "cyan",
}


class ConversationPrinter:
    """
    A class for displaying conversations and responses using rich.

    Attributes:
        console: Console to print to (a new one by default)
        show_usage: Whether to show the usage record under a response
        code_theme: Theme for code blocks
        inline_code_theme: Theme for inline code
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        show_usage: bool = True,
        code_theme: str = "coffee",
        inline_code_theme: str = "monokai",
    ):
        self.console = console or Console()
        self.show_usage = show_usage
        self.code_theme = code_theme
        self.inline_code_theme = inline_code_theme

    def print_conversation(self, conversation: Conversation) -> None:
        """
        Print every message of a conversation, one panel per message.
        """
        for message in conversation:
            self.console.print(self._message_panel(message))

    def print_response(self, response: CompletionResponse) -> CompletionResponse:
        """
        Display a completion response with its provider, stop reason and usage.

        Returns:
            The same response for chaining
        """
        title = f"[bold]{response.model}[/bold] [dim]({response.provider.value}, {response.stop_reason})[/dim]"
        content = self._message_body(response.message)

        if self.show_usage:
            usage_json = json.dumps(dataclasses.asdict(response.usage_record), indent=2)
            usage_panel = Panel(
                Syntax(usage_json, "json", theme="lightbulb", background_color="default"),
                title="[bold]Usage[/bold]",
                border_style="dim",
            )
            content = Group(content, usage_panel)

        self.console.print(Panel(content, title=title, border_style="green", padding=(1, 2)))
        return response

    def _message_panel(self, message: Message) -> Panel:
        role = message.get("role", Role.USER)
        title = f"[bold]{role}[/bold]"
        if role in (Role.TOOL_CALL, Role.TOOL_RESULT):
            title += f" [dim]{message.get('tool_name', '')} ({message.get('tool_use_id', '')})[/dim]"
        return Panel(
            self._message_body(message),
            title=title,
            title_align="left",
            border_style=ROLE_STYLES.get(role, "white"),
        )

    def _message_body(self, message: Message) -> Any:
        text = message.get("text", "")

        if message.get("role") == Role.TOOL_CALL:
            arguments = json.dumps(message.get("tool_arguments") or {}, indent=2)
            syntax = Syntax(arguments, "json", theme="lightbulb", background_color="default")
            if text.strip():
                return Group(Text(text), syntax)
            return syntax

        if not text.strip():
            return Text("(empty message)", style="dim italic")
        return Markdown(text, code_theme=self.code_theme, inline_code_theme=self.inline_code_theme)
