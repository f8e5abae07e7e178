# /flowgate/services/integrations/calendar.py

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from flowgate.config.settings import settings
from flowgate.models.flow import DataItem, FlowExecutionContext, IntegrationConfig, IntegrationType
from flowgate.services.db_service import OAuthTokenStore, oauth_token_store
from flowgate.services.errors import IntegrationError
from flowgate.services.http_fetcher import HttpFetcher, http_fetcher
from flowgate.services.integrations.base import IntegrationHandler, resolve_source_id
from flowgate.services.transformer import DataItemTransformer

logger = logging.getLogger(__name__)

PROVIDER = "google"
PRIMARY_CALENDAR = "primary"
DEFAULT_WORK_START = "09:00"
DEFAULT_WORK_END = "18:00"
DEFAULT_SLOT_MINUTES = 60
DEFAULT_MAX_RESULTS = 50


def _parse_clock(value: str) -> time:
    hours, minutes = value.split(":")[:2]
    return time(int(hours), int(minutes))


def _parse_google_time(value: Any, tz: ZoneInfo) -> Optional[datetime]:
    """Event/busy boundaries come either as `dateTime` (RFC 3339) or, for all-day events, `date`."""
    if not value:
        return None
    if isinstance(value, str):
        raw = value
    elif value.get("dateTime"):
        raw = value["dateTime"]
    elif value.get("date"):
        return datetime.combine(date.fromisoformat(value["date"]), time.min, tzinfo=tz)
    else:
        return None
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


def compute_free_slots(
    day: date,
    busy: List[Tuple[datetime, datetime]],
    work_start: str = DEFAULT_WORK_START,
    work_end: str = DEFAULT_WORK_END,
    slot_minutes: int = DEFAULT_SLOT_MINUTES,
    tz: ZoneInfo = ZoneInfo("UTC"),
    now: Optional[datetime] = None,
) -> List[DataItem]:
    """
    Splits the working hours of `day` into consecutive slots and keeps those
    that overlap no busy interval and have not started yet.
    """
    start = datetime.combine(day, _parse_clock(work_start), tzinfo=tz)
    end = datetime.combine(day, _parse_clock(work_end), tzinfo=tz)
    step = timedelta(minutes=slot_minutes)
    now = now or datetime.now(timezone.utc)

    slots = []
    cursor = start
    while cursor + step <= end:
        slot_end = cursor + step
        overlaps = any(busy_start < slot_end and busy_end > cursor for busy_start, busy_end in busy)
        if not overlaps and cursor > now:
            slots.append(DataItem(
                id=f"slot_{cursor:%H_%M}",
                title=f"{cursor:%H:%M} - {slot_end:%H:%M}",
            ))
        cursor = slot_end
    return slots


class GoogleCalendarIntegrationHandler(IntegrationHandler):
    """
    Google Calendar integration. Supported actions: check_availability,
    get_events, get_today_events, get_tomorrow_events, list_calendar_users.
    The calendar owner is resolved from sourceType; the day from
    params.dateSource (static | variable | today).
    """

    def __init__(self, fetcher: Optional[HttpFetcher] = None, token_store: Optional[OAuthTokenStore] = None):
        self.fetcher = fetcher or http_fetcher
        self.token_store = token_store or oauth_token_store
        self.tz = ZoneInfo(settings.calendar_timezone)

    def can_handle(self, config: IntegrationConfig) -> bool:
        return config.integration_type == IntegrationType.GOOGLE_CALENDAR.value

    async def fetch_data(
        self,
        config: IntegrationConfig,
        form_data: Dict[str, Any],
        context: Optional[FlowExecutionContext] = None,
    ) -> List[DataItem]:
        logger.debug(f"Fetching Google Calendar data: action={config.action}, sourceType={config.source_type.value}")

        if config.action == "list_calendar_users":
            return await self.list_calendar_users()

        user_id = resolve_source_id(config, form_data, context)
        if not user_id:
            logger.warning(f"Could not resolve calendar user for action: {config.action}")
            return []

        today = datetime.now(self.tz).date()
        if config.action == "check_availability":
            return await self.get_available_slots(user_id, self.resolve_date(config.params, form_data), config.params)
        if config.action == "get_events":
            return await self.get_events(user_id, self.resolve_date(config.params, form_data), config)
        if config.action == "get_today_events":
            return await self.get_events(user_id, today, config)
        if config.action == "get_tomorrow_events":
            return await self.get_events(user_id, today + timedelta(days=1), config)

        logger.warning(f"Unknown Google Calendar action: {config.action}")
        return []

    def resolve_date(self, params: Dict[str, Any], form_data: Dict[str, Any]) -> date:
        today = datetime.now(self.tz).date()
        source = params.get("dateSource")
        raw = None
        if source == "static":
            raw = params.get("staticDate")
        elif source == "variable" and params.get("dateVariable"):
            raw = form_data.get(params["dateVariable"])

        if not raw:
            return today
        try:
            return date.fromisoformat(str(raw)[:10])
        except ValueError:
            logger.warning(f"Unparseable date '{raw}', using today")
            return today

    async def _headers(self, user_id: str) -> Dict[str, str]:
        token = await self.token_store.get_access_token(user_id, PROVIDER)
        if not token:
            raise IntegrationError(
                f"Google Calendar is not connected for user {user_id}",
                IntegrationType.GOOGLE_CALENDAR.value,
            )
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    def _day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        start = datetime.combine(day, time.min, tzinfo=self.tz)
        return start, start + timedelta(days=1)

    async def get_available_slots(self, user_id: str, day: date, params: Dict[str, Any]) -> List[DataItem]:
        headers = await self._headers(user_id)
        time_min, time_max = self._day_bounds(day)
        response = await self.fetcher.request(
            "POST",
            f"{settings.calendar_api_base_url}/freeBusy",
            headers=headers,
            body={
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "timeZone": settings.calendar_timezone,
                "items": [{"id": PRIMARY_CALENDAR}],
            },
        )

        calendars = (response.data or {}).get("calendars", {}) if isinstance(response.data, dict) else {}
        busy = []
        for period in (calendars.get(PRIMARY_CALENDAR) or {}).get("busy", []):
            busy_start = _parse_google_time(period.get("start"), self.tz)
            busy_end = _parse_google_time(period.get("end"), self.tz)
            if busy_start and busy_end:
                busy.append((busy_start, busy_end))

        slots = compute_free_slots(
            day,
            busy,
            work_start=params.get("workingHoursStart") or DEFAULT_WORK_START,
            work_end=params.get("workingHoursEnd") or DEFAULT_WORK_END,
            slot_minutes=int(params.get("slotDuration") or DEFAULT_SLOT_MINUTES),
            tz=self.tz,
        )
        logger.debug(f"Found {len(slots)} available slots for user {user_id} on {day}")
        return slots

    async def get_events(self, user_id: str, day: date, config: IntegrationConfig) -> List[DataItem]:
        headers = await self._headers(user_id)
        time_min, time_max = self._day_bounds(day)
        response = await self.fetcher.request(
            "GET",
            f"{settings.calendar_api_base_url}/calendars/{PRIMARY_CALENDAR}/events",
            headers=headers,
            params={
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "singleEvents": "true",
                "orderBy": "startTime",
                "maxResults": int(config.params.get("maxResults") or DEFAULT_MAX_RESULTS),
            },
        )
        events = (response.data or {}).get("items", []) if isinstance(response.data, dict) else []
        return [self._event_to_item(event, config) for event in events]

    def _event_to_item(self, event: Dict[str, Any], config: IntegrationConfig) -> DataItem:
        item = DataItemTransformer.transform(event, config.transform_to)
        updates = {}
        if not item.id:
            updates["id"] = str(event.get("id", ""))
        if not item.title:
            updates["title"] = event.get("summary") or "Untitled Event"
        if item.description is None:
            start = event.get("start") or {}
            if start.get("dateTime"):
                updates["description"] = _parse_google_time(start, self.tz).astimezone(self.tz).strftime("%H:%M")
            else:
                updates["description"] = "All day"
        return item.model_copy(update=updates) if updates else item

    async def list_calendar_users(self) -> List[DataItem]:
        users = await self.token_store.list_users_with_provider(PROVIDER)
        return [
            DataItem(id=user["id"], title=user["name"] or "Unknown User", description=user.get("email"))
            for user in users
        ]
