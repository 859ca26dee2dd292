from io import StringIO

from rich.console import Console

from unillm.rich_printer import ConversationPrinter
from unillm.types import CompletionResponse, Provider, UsageRecord
from unillm.utils import (
    create_system_message, create_user_message, create_assistant_message,
    create_tool_call, create_tool_result,
)


def make_printer(**kwargs):
    output = StringIO()
    console = Console(file=output, width=100, force_terminal=False, color_system=None)
    return ConversationPrinter(console=console, **kwargs), output


class TestConversationPrinter:

    def test_print_conversation(self):
        printer, output = make_printer()

        printer.print_conversation([
            create_system_message("be terse"),
            create_user_message("weather in Paris?"),
            create_tool_call("call_1", "get_weather", {"city": "Paris"}),
            create_tool_result("call_1", "get_weather", "sunny"),
            create_assistant_message(""),
        ])

        text = output.getvalue()
        assert "be terse" in text
        assert "get_weather (call_1)" in text
        assert '"city": "Paris"' in text
        assert "sunny" in text
        assert "(empty message)" in text

    def test_print_response(self):
        printer, output = make_printer()
        usage = UsageRecord(model="gpt-4o", input_tokens=10, output_tokens=2, total_tokens=12)
        response = CompletionResponse(
            model="gpt-4o",
            provider=Provider.OPENAI,
            stop_reason="stop",
            message=create_assistant_message("The answer is **4**."),
            usage_record=usage,
        )

        assert printer.print_response(response) is response

        text = output.getvalue()
        assert "gpt-4o" in text
        assert "openai, stop" in text
        assert "The answer is 4." in text
        assert '"total_tokens": 12' in text

    def test_print_response_without_usage(self):
        printer, output = make_printer(show_usage=False)
        response = CompletionResponse(
            model="claude-3-haiku",
            provider=Provider.ANTHROPIC,
            stop_reason="end_turn",
            message=create_assistant_message("4"),
            usage_record=UsageRecord(model="claude-3-haiku", input_tokens=1, output_tokens=1, total_tokens=2),
        )

        printer.print_response(response)

        assert "total_tokens" not in output.getvalue()
