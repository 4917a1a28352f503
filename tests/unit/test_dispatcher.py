"""
Unit tests for CommandDispatcher.
"""

import io

import pytest

from sysrelay.config import UnknownCommandPolicy
from sysrelay.handlers import MailRelayError
from sysrelay.protocol import (
    MAIL_FAILURE_LINE,
    MAIL_SUCCESS_LINE,
    CommandDispatcher,
    DispatchResult,
    SendMailCommand,
    StatusCommand,
    UnknownCommand,
)


@pytest.fixture
def sink() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def dispatcher(status_reporter, mail_relay) -> CommandDispatcher:
    return CommandDispatcher(status_reporter, mail_relay)


class TestStatus:
    def test_status_report_written(self, dispatcher, status_reporter, sink):
        result = dispatcher.dispatch(StatusCommand(), sink)

        assert result == DispatchResult("SYSINFO", "ok")
        assert sink.getvalue() == "=== Fake ===\nall good\n"
        assert status_reporter.calls == 1

    def test_reporter_exception_becomes_text(self, mail_relay, sink):
        class BrokenReporter:
            def report(self, sink):
                sink.write("=== Partial ===\n")
                raise RuntimeError("boom")

        dispatcher = CommandDispatcher(BrokenReporter(), mail_relay)
        result = dispatcher.dispatch(StatusCommand(), sink)

        assert result.outcome == "status-failed"
        assert sink.getvalue().startswith("=== Partial ===\n")
        assert "Error:" in sink.getvalue()


class TestSendMail:
    def test_success(self, dispatcher, mail_relay, sink):
        command = SendMailCommand("alice@example.com", "Hello", "Body text")

        result = dispatcher.dispatch(command, sink)

        assert result == DispatchResult("SENDMAIL", "ok")
        assert mail_relay.sent == [("alice@example.com", "Hello", "Body text")]
        assert sink.getvalue() == (
            "Command: SENDMAIL\n"
            "To: alice@example.com\n"
            "Subject: Hello\n"
            "Body: Body text\n"
            f"{MAIL_SUCCESS_LINE}\n"
        )

    def test_relay_returns_false(self, dispatcher, mail_relay, sink):
        mail_relay.result = False

        result = dispatcher.dispatch(SendMailCommand("a@b.c", "s", "b"), sink)

        assert result.outcome == "mail-failed"
        assert sink.getvalue().endswith(f"{MAIL_FAILURE_LINE}\n")

    def test_relay_exception_is_absorbed(self, dispatcher, mail_relay, sink):
        mail_relay.error = MailRelayError("SendGrid down")

        result = dispatcher.dispatch(SendMailCommand("a@b.c", "s", "b"), sink)

        assert result.outcome == "mail-failed"
        assert "To: a@b.c\n" in sink.getvalue()
        assert sink.getvalue().endswith(f"{MAIL_FAILURE_LINE}\n")

    def test_empty_fields_still_forwarded(self, dispatcher, mail_relay, sink):
        dispatcher.dispatch(SendMailCommand(), sink)

        assert mail_relay.sent == [("", "", "")]
        assert "To: \n" in sink.getvalue()


class TestUnknownPolicy:
    def test_close_policy_writes_nothing(self, status_reporter, mail_relay, sink):
        dispatcher = CommandDispatcher(status_reporter, mail_relay, UnknownCommandPolicy.CLOSE)

        result = dispatcher.dispatch(UnknownCommand("HELLO"), sink)

        assert result == DispatchResult("UNKNOWN", "closed")
        assert sink.getvalue() == ""
        assert status_reporter.calls == 0

    def test_default_policy_is_close(self, dispatcher):
        assert dispatcher.unknown_policy is UnknownCommandPolicy.CLOSE

    def test_status_policy_answers_with_report(self, status_reporter, mail_relay, sink):
        dispatcher = CommandDispatcher(status_reporter, mail_relay, UnknownCommandPolicy.STATUS)

        result = dispatcher.dispatch(UnknownCommand("HELLO"), sink)

        assert result == DispatchResult("UNKNOWN", "ok")
        assert sink.getvalue() == "=== Fake ===\nall good\n"


def test_unhandled_command_type(dispatcher, sink):
    with pytest.raises(TypeError):
        dispatcher.dispatch(object(), sink)
