"""Unit tests for Google Calendar event creation."""

import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, Mock, patch

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../src"))

from googleapiclient.errors import HttpError

from doubleme_connect.calendar.events import (
    CalendarNotConnectedError,
    build_event_body,
    create_calendar_event,
    handle_http_error,
)
from doubleme_connect.utils.errors import ConnectError

START = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)
END = START + timedelta(hours=1)


class TestBuildEventBody:
    def test_minimal(self):
        body = build_event_body(" Kickoff ", START, END)
        assert body == {
            "summary": "Kickoff",
            "start": {"dateTime": "2026-03-02T10:00:00+00:00"},
            "end": {"dateTime": "2026-03-02T11:00:00+00:00"},
        }

    def test_full(self):
        body = build_event_body(
            "Kickoff", START, END, "Agenda", ["a@example.com", " ", "b@example.com"], "Europe/Berlin"
        )
        assert body["description"] == "Agenda"
        assert body["attendees"] == [{"email": "a@example.com"}, {"email": "b@example.com"}]
        assert body["start"]["timeZone"] == "Europe/Berlin"

    def test_end_before_start(self):
        with pytest.raises(ValueError):
            build_event_body("Kickoff", END, START)


class TestCreateCalendarEvent:
    """Tests for create_calendar_event."""

    def setup_method(self):
        self.oauth = Mock()
        self.oauth.get_access_token.return_value = "access-token"
        self.service = MagicMock()
        self.service.events.return_value.insert.return_value.execute.return_value = {
            "id": "evt-1",
            "htmlLink": "https://calendar.google.com/event?eid=1",
        }

    def test_inserts_into_primary_calendar(self):
        with patch(
            "doubleme_connect.calendar.events.build", return_value=self.service
        ) as mock_build:
            event = create_calendar_event(
                "user-1", "Kickoff", START, END, attendees=["a@example.com"], oauth_client=self.oauth
            )

        assert event.id == "evt-1"
        assert event.html_link == "https://calendar.google.com/event?eid=1"
        assert mock_build.call_args[0] == ("calendar", "v3")
        assert mock_build.call_args[1]["credentials"].token == "access-token"

        insert_kwargs = self.service.events.return_value.insert.call_args[1]
        assert insert_kwargs["calendarId"] == "primary"
        assert insert_kwargs["sendUpdates"] == "all"
        assert insert_kwargs["body"]["attendees"] == [{"email": "a@example.com"}]

    def test_not_connected(self):
        self.oauth.get_access_token.return_value = None
        with patch("doubleme_connect.calendar.events.build") as mock_build:
            with pytest.raises(CalendarNotConnectedError):
                create_calendar_event("user-1", "Kickoff", START, END, oauth_client=self.oauth)
        mock_build.assert_not_called()

    def test_http_error(self):
        self.service.events.return_value.insert.return_value.execute.side_effect = HttpError(
            Mock(status=403, reason="Forbidden"), b'{"error": {"message": "Forbidden"}}'
        )
        with patch("doubleme_connect.calendar.events.build", return_value=self.service):
            with pytest.raises(ConnectError) as exc_info:
                create_calendar_event("user-1", "Kickoff", START, END, oauth_client=self.oauth)
        assert "denied" in str(exc_info.value)


class TestHandleHttpError:
    def test_status_messages(self):
        def error(status):
            return HttpError(Mock(status=status, reason="x"), b"{}")

        assert "Reconnect" in str(handle_http_error(error(401)))
        assert "quota" in str(handle_http_error(error(429)))
        assert "HTTP 500" in str(handle_http_error(error(500)))
