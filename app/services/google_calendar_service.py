"""
Google Calendar Service
Reads a professional's busy time and manages the meeting event of an appointment
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Protocol

import httpx
from cryptography.fernet import Fernet
from sqlalchemy.orm import Session

from ..config import (
    CALENDAR_ENCRYPTION_KEY,
    EXTERNAL_CALENDAR_TIMEOUT_SECONDS,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    SERVICE_TIMEZONE,
)
from ..domain.availability.slot_generator import TimeRange
from ..errors import ExternalCalendarUnavailable
from ..models import Appointment, Professional
from ..models_google_calendar import GoogleCalendarIntegration
from ..shared.clock import SERVICE_TZ, Clock, SystemClock, service_datetime

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_API = "https://www.googleapis.com/calendar/v3"


class BusyCalendar(Protocol):
    async def fetch_busy_intervals(
        self, professional_id: int, target_date: date, window: TimeRange
    ) -> List[TimeRange]:
        ...


def get_cipher() -> Fernet:
    if not CALENDAR_ENCRYPTION_KEY:
        raise ValueError("CALENDAR_ENCRYPTION_KEY not configured")
    return Fernet(CALENDAR_ENCRYPTION_KEY.encode())


def encrypt_token(token: str) -> str:
    return get_cipher().encrypt(token.encode()).decode()


def decrypt_token(token: str) -> str:
    return get_cipher().decrypt(token.encode()).decode()


def get_integration(db: Session, professional_id: int) -> Optional[GoogleCalendarIntegration]:
    return (
        db.query(GoogleCalendarIntegration)
        .filter(GoogleCalendarIntegration.professional_id == professional_id)
        .first()
    )


async def get_valid_access_token(
    integration: GoogleCalendarIntegration,
    db: Session,
    client: httpx.AsyncClient,
    clock: Optional[Clock] = None,
) -> Optional[str]:
    """
    Get a valid access token, refreshing if necessary
    Returns None if refresh fails
    """
    now = (clock or SystemClock()).now()
    try:
        # Check if token is expired or about to expire (within 5 minutes)
        if integration.token_expires_at > now + timedelta(minutes=5):
            return decrypt_token(integration.access_token)

        logger.info("🔄 Google Calendar token expired, refreshing...")
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "client_id": GOOGLE_CLIENT_ID,
                "client_secret": GOOGLE_CLIENT_SECRET,
                "refresh_token": decrypt_token(integration.refresh_token),
                "grant_type": "refresh_token",
            },
        )
        if response.status_code != 200:
            logger.error(f"❌ Token refresh failed: {response.text}")
            return None

        tokens = response.json()
        new_access_token = tokens.get("access_token")
        if not new_access_token:
            logger.error("❌ No access token in refresh response")
            return None

        integration.access_token = encrypt_token(new_access_token)
        integration.token_expires_at = now + timedelta(seconds=tokens.get("expires_in", 3600))
        db.commit()

        logger.info("✅ Google Calendar token refreshed successfully")
        return new_access_token

    except Exception as e:
        logger.error(f"❌ Error getting valid access token: {str(e)}")
        return None


def parse_google_datetime(value: str) -> datetime:
    """RFC 3339 timestamp from the API as an aware datetime"""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def clip_to_date(start: datetime, end: datetime, target_date: date) -> Optional[TimeRange]:
    """Wall-clock part of [start, end) falling on target_date in the service timezone"""
    day_start = service_datetime(target_date, time.min)
    day_end = service_datetime(target_date + timedelta(days=1), time.min)
    start = max(start.astimezone(SERVICE_TZ), day_start)
    end = min(end.astimezone(SERVICE_TZ), day_end)
    if start >= end:
        return None
    return TimeRange(start.time(), time.max if end >= day_end else end.time())


class GoogleCalendarBusyAdapter:
    """Busy time of a professional's linked Google calendar, via the FreeBusy API"""

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        timeout: float = EXTERNAL_CALENDAR_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.db = db
        self.clock = clock or SystemClock()
        self.timeout = timeout
        self.transport = transport

    async def fetch_busy_intervals(
        self, professional_id: int, target_date: date, window: TimeRange
    ) -> List[TimeRange]:
        """
        Busy intervals on target_date within window.

        An unreachable or failing calendar yields an empty list so slot
        listing keeps working from the local data alone.
        """
        try:
            return await self._query_free_busy(professional_id, target_date, window)
        except ExternalCalendarUnavailable as e:
            logger.warning(
                f"⚠️ External calendar unavailable for professional {professional_id} on {target_date}, "
                f"listing slots without it: {e.message}"
            )
            return []

    async def _query_free_busy(
        self, professional_id: int, target_date: date, window: TimeRange
    ) -> List[TimeRange]:
        integration = get_integration(self.db, professional_id)
        if not integration or not integration.sync_enabled:
            return []

        calendar_id = integration.google_calendar_id or "primary"
        body = {
            "timeMin": service_datetime(target_date, window.start).isoformat(),
            "timeMax": service_datetime(target_date, window.end).isoformat(),
            "timeZone": SERVICE_TIMEZONE,
            "items": [{"id": calendar_id}],
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                access_token = await get_valid_access_token(integration, self.db, client, self.clock)
                if not access_token:
                    raise ExternalCalendarUnavailable("No valid access token")
                response = await client.post(
                    f"{GOOGLE_CALENDAR_API}/freeBusy",
                    headers={"Authorization": f"Bearer {access_token}"},
                    json=body,
                )
        except httpx.HTTPError as e:
            raise ExternalCalendarUnavailable(f"{type(e).__name__}: {e}") from e

        if response.status_code != 200:
            raise ExternalCalendarUnavailable(f"FreeBusy returned HTTP {response.status_code}")

        try:
            calendar = response.json()["calendars"][calendar_id]
            if calendar.get("errors"):
                raise ExternalCalendarUnavailable(f"FreeBusy calendar errors: {calendar['errors']}")
            intervals = []
            for period in calendar.get("busy", []):
                clipped = clip_to_date(
                    parse_google_datetime(period["start"]), parse_google_datetime(period["end"]), target_date
                )
                if clipped:
                    intervals.append(clipped)
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalCalendarUnavailable(f"Malformed FreeBusy response: {e}") from e

        logger.info(f"📅 {len(intervals)} busy interval(s) for professional {professional_id} on {target_date}")
        return intervals


# ============================================================================
# MEETING EVENTS
# ============================================================================


@dataclass
class MeetingDetails:
    event_id: str
    meeting_link: Optional[str]  # None while Google is still provisioning the conference


def extract_meeting_link(event: dict) -> Optional[str]:
    for entry_point in event.get("conferenceData", {}).get("entryPoints", []):
        if entry_point.get("entryPointType") == "video" and entry_point.get("uri"):
            return entry_point["uri"]
    return event.get("hangoutLink")


def build_meeting_event(appointment: Appointment, professional: Professional) -> dict:
    start = datetime.combine(appointment.appointment_date, appointment.start_time)
    end = datetime.combine(appointment.appointment_date, appointment.end_time)

    description = [f"Sesión online con {professional.name}"]
    if appointment.consultation_goal:
        description.append(f"Objetivo: {appointment.consultation_goal}")
    if appointment.injury_condition:
        description.append(f"Lesión o condición: {appointment.injury_condition}")
    if appointment.available_equipment:
        description.append(f"Equipamiento: {', '.join(appointment.available_equipment)}")
    if appointment.additional_comments:
        description.append(f"Comentarios: {appointment.additional_comments}")

    attendees = [
        {"email": email}
        for email in (appointment.contact_email, professional.contact_email)
        if email
    ]

    return {
        "summary": f"Sesión con {professional.name}",
        "description": "\n".join(description),
        "start": {"dateTime": start.isoformat(), "timeZone": SERVICE_TIMEZONE},
        "end": {"dateTime": end.isoformat(), "timeZone": SERVICE_TIMEZONE},
        "attendees": attendees,
        "conferenceData": {
            "createRequest": {
                # Same request id on retries: Google returns the same conference
                "requestId": appointment.id,
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        },
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": "email", "minutes": 60},
                {"method": "popup", "minutes": 30},
            ],
        },
    }


async def create_meeting_event(
    db: Session,
    appointment: Appointment,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[MeetingDetails]:
    """
    Create the calendar event with a Google Meet conference for an appointment
    Returns None if the professional has no usable calendar or the API call fails
    """
    try:
        integration = get_integration(db, appointment.professional_id)
        if not integration or not integration.sync_enabled:
            logger.info("ℹ️ Google Calendar not connected or sync disabled")
            return None

        professional = db.query(Professional).filter(Professional.id == appointment.professional_id).first()
        calendar_id = integration.google_calendar_id or "primary"

        async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
            access_token = await get_valid_access_token(integration, db, client)
            if not access_token:
                logger.error("❌ Failed to get valid access token")
                return None

            response = await client.post(
                f"{GOOGLE_CALENDAR_API}/calendars/{calendar_id}/events",
                params={"conferenceDataVersion": 1, "sendUpdates": "all"},
                headers={"Authorization": f"Bearer {access_token}"},
                json=build_meeting_event(appointment, professional),
            )

        if response.status_code not in [200, 201]:
            logger.error(f"❌ Failed to create calendar event: {response.text}")
            return None

        event = response.json()
        details = MeetingDetails(event_id=event["id"], meeting_link=extract_meeting_link(event))
        logger.info(f"✅ Google Calendar event created: {details.event_id}")
        return details

    except Exception as e:
        logger.error(f"❌ Error creating calendar event: {str(e)}")
        return None


async def get_meeting_link(
    db: Session,
    professional_id: int,
    event_id: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Optional[str]:
    """Read the conference link of an existing event, None while still pending"""
    try:
        integration = get_integration(db, professional_id)
        if not integration:
            return None
        calendar_id = integration.google_calendar_id or "primary"

        async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
            access_token = await get_valid_access_token(integration, db, client)
            if not access_token:
                return None
            response = await client.get(
                f"{GOOGLE_CALENDAR_API}/calendars/{calendar_id}/events/{event_id}",
                headers={"Authorization": f"Bearer {access_token}"},
            )

        if response.status_code != 200:
            logger.error(f"❌ Failed to read calendar event {event_id}: {response.text}")
            return None
        return extract_meeting_link(response.json())

    except Exception as e:
        logger.error(f"❌ Error reading calendar event: {str(e)}")
        return None


async def delete_calendar_event(
    db: Session,
    professional_id: int,
    event_id: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """
    Delete a Google Calendar event
    Returns True if successful (or already gone), False otherwise
    """
    try:
        integration = get_integration(db, professional_id)
        if not integration:
            logger.info("ℹ️ Google Calendar not connected")
            return False
        calendar_id = integration.google_calendar_id or "primary"

        async with httpx.AsyncClient(timeout=30.0, transport=transport) as client:
            access_token = await get_valid_access_token(integration, db, client)
            if not access_token:
                logger.error("❌ Failed to get valid access token")
                return False
            response = await client.delete(
                f"{GOOGLE_CALENDAR_API}/calendars/{calendar_id}/events/{event_id}",
                params={"sendUpdates": "all"},
                headers={"Authorization": f"Bearer {access_token}"},
            )

        if response.status_code not in [200, 204, 404, 410]:
            logger.error(f"❌ Failed to delete calendar event: {response.text}")
            return False

        logger.info(f"✅ Google Calendar event deleted: {event_id}")
        return True

    except Exception as e:
        logger.error(f"❌ Error deleting calendar event: {str(e)}")
        return False
