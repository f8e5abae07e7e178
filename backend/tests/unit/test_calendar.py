# backend/tests/unit/test_calendar.py

from datetime import date, datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from flowgate.config.settings import settings
from flowgate.models.flow import FlowExecutionContext, IntegrationConfig, SourceType
from flowgate.services.errors import IntegrationError
from flowgate.services.http_fetcher import FetchResponse
from flowgate.services.integrations.calendar import GoogleCalendarIntegrationHandler, compute_free_slots

UTC = ZoneInfo("UTC")
DAY = date(2030, 1, 2)


def _busy(start_hour, end_hour):
    return (
        datetime(2030, 1, 2, start_hour, tzinfo=timezone.utc),
        datetime(2030, 1, 2, end_hour, tzinfo=timezone.utc),
    )


class TestComputeFreeSlots:

    def test_busy_interval_removes_overlapping_slot(self):
        slots = compute_free_slots(
            DAY, [_busy(10, 11)], work_start="09:00", work_end="13:00", slot_minutes=60, tz=UTC,
            now=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )
        assert [s.id for s in slots] == ["slot_09_00", "slot_11_00", "slot_12_00"]
        assert slots[0].title == "09:00 - 10:00"

    def test_started_slots_are_skipped(self):
        slots = compute_free_slots(
            DAY, [], work_start="09:00", work_end="13:00", slot_minutes=60, tz=UTC,
            now=datetime(2030, 1, 2, 11, 30, tzinfo=timezone.utc),
        )
        assert [s.id for s in slots] == ["slot_12_00"]

    def test_partial_trailing_slot_is_dropped(self):
        slots = compute_free_slots(
            DAY, [], work_start="09:00", work_end="10:45", slot_minutes=30, tz=UTC,
            now=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )
        assert [s.id for s in slots] == ["slot_09_00", "slot_09_30", "slot_10_00"]


class TestGoogleCalendarIntegrationHandler:

    @pytest.fixture
    def token_store(self):
        store = MagicMock()
        store.get_access_token = AsyncMock(return_value="access-token")
        store.list_users_with_provider = AsyncMock(return_value=[
            {"id": "u1", "name": "Dr. Ade", "email": "ade@example.com"},
        ])
        return store

    @pytest.fixture
    def fetcher(self):
        fetcher = MagicMock()
        fetcher.request = AsyncMock()
        return fetcher

    @pytest.mark.asyncio
    async def test_check_availability_for_owner(self, fetcher, token_store):
        fetcher.request.return_value = FetchResponse(status=200, latency_ms=1.0, data={
            "calendars": {"primary": {"busy": [
                {"start": "2030-01-02T10:00:00Z", "end": "2030-01-02T11:00:00Z"},
            ]}},
        })
        handler = GoogleCalendarIntegrationHandler(fetcher=fetcher, token_store=token_store)
        config = IntegrationConfig(
            componentName="slots", integrationType="google_calendar", sourceType="owner",
            action="check_availability",
            params={"dateSource": "static", "staticDate": "2030-01-02",
                    "workingHoursStart": "09:00", "workingHoursEnd": "12:00"},
        )

        items = await handler.fetch_data(config, {}, FlowExecutionContext(chatbot_user_id="owner-1"))

        assert [i.id for i in items] == ["slot_09_00", "slot_11_00"]
        token_store.get_access_token.assert_awaited_once_with("owner-1", "google")
        args, kwargs = fetcher.request.call_args
        assert args[0] == "POST"
        assert args[1].endswith("/freeBusy")
        assert kwargs["headers"]["Authorization"] == "Bearer access-token"
        assert kwargs["body"]["items"] == [{"id": "primary"}]

    @pytest.mark.asyncio
    async def test_get_events_maps_fallback_fields(self, fetcher, token_store):
        fetcher.request.return_value = FetchResponse(status=200, latency_ms=1.0, data={"items": [
            {"id": "e1", "summary": "Checkup", "start": {"dateTime": "2030-01-02T10:30:00Z"}},
            {"id": "e2", "start": {"date": "2030-01-02"}},
        ]})
        handler = GoogleCalendarIntegrationHandler(fetcher=fetcher, token_store=token_store)
        config = IntegrationConfig(
            componentName="events", integrationType="google_calendar", sourceType="variable",
            sourceVariable="doctor", action="get_events",
            params={"dateSource": "variable", "dateVariable": "day"},
        )

        items = await handler.fetch_data(config, {"doctor": "u1", "day": "2030-01-02"})

        assert [i.to_wire() for i in items] == [
            {"id": "e1", "title": "Checkup", "description": "10:30"},
            {"id": "e2", "title": "Untitled Event", "description": "All day"},
        ]
        args, kwargs = fetcher.request.call_args
        assert args == ("GET", f"{settings.calendar_api_base_url}/calendars/primary/events")
        assert kwargs["params"]["singleEvents"] == "true"

    @pytest.mark.asyncio
    async def test_missing_token_raises(self, fetcher, token_store):
        token_store.get_access_token = AsyncMock(return_value=None)
        handler = GoogleCalendarIntegrationHandler(fetcher=fetcher, token_store=token_store)
        config = IntegrationConfig(
            componentName="slots", integrationType="google_calendar", sourceType="static",
            sourceId="cal-owner", action="check_availability",
        )

        with pytest.raises(IntegrationError, match="not connected"):
            await handler.fetch_data(config, {})
        fetcher.request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unresolved_user_and_unknown_action_return_empty(self, fetcher, token_store):
        handler = GoogleCalendarIntegrationHandler(fetcher=fetcher, token_store=token_store)
        unresolved = IntegrationConfig(
            componentName="slots", integrationType="google_calendar", sourceType=SourceType.OWNER,
            action="check_availability",
        )
        unknown = IntegrationConfig(
            componentName="slots", integrationType="google_calendar", sourceId="cal-owner", action="book",
        )

        assert await handler.fetch_data(unresolved, {}) == []
        assert await handler.fetch_data(unknown, {}) == []
        fetcher.request.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_list_calendar_users(self, fetcher, token_store):
        handler = GoogleCalendarIntegrationHandler(fetcher=fetcher, token_store=token_store)
        config = IntegrationConfig(componentName="doctors", integrationType="google_calendar", action="list_calendar_users")

        items = await handler.fetch_data(config, {})

        assert [i.to_wire() for i in items] == [{"id": "u1", "title": "Dr. Ade", "description": "ade@example.com"}]

    def test_resolve_date(self, fetcher, token_store):
        handler = GoogleCalendarIntegrationHandler(fetcher=fetcher, token_store=token_store)
        today = datetime.now(handler.tz).date()

        assert handler.resolve_date({"dateSource": "static", "staticDate": "2030-05-06"}, {}) == date(2030, 5, 6)
        assert handler.resolve_date({"dateSource": "variable", "dateVariable": "d"}, {"d": "2030-05-07T10:00"}) == date(2030, 5, 7)
        assert handler.resolve_date({"dateSource": "static", "staticDate": "not a date"}, {}) == today
        assert handler.resolve_date({}, {}) == today
