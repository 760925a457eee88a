from __future__ import annotations
from typing import Any, Callable, Dict, Optional

from googleapiclient.discovery import build

from relay.core.timeutil import to_iso
from relay.log import get_logger
from .google_oauth import get_creds
from .store import Commitment

SCOPES = ["https://www.googleapis.com/auth/calendar"]

log = get_logger("gcal")


def event_body(event: Commitment, target_name: str, attendees: Optional[list[str]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "summary": event.title,
        "description": f"Scheduled by the assistant with {target_name}." if target_name else "Scheduled by the assistant.",
        "start": {"dateTime": to_iso(event.start)},
        "end": {"dateTime": to_iso(event.end)},
        "extendedProperties": {"private": {"relayEventId": event.id}},
    }
    if attendees:
        body["attendees"] = [{"email": a} for a in attendees]
    return body


class GoogleCalendarMirror:
    """Copies committed events into a Google Calendar.

    Called after the local commitment is stored; any exception propagates to
    the caller, which records it as ``calendarSync: failed``.
    """

    def __init__(self, *, client_secret: str, token_path: str, calendar_id: str = "primary",
                 service_factory: Optional[Callable[[], Any]] = None):
        self.client_secret = client_secret
        self.token_path = token_path
        self.calendar_id = calendar_id
        self._service_factory = service_factory or self._google_service
        self._svc = None

    def _google_service(self):
        creds = get_creds(scopes=SCOPES, client_secret_path=self.client_secret, token_path=self.token_path)
        return build("calendar", "v3", credentials=creds, cache_discovery=False)

    def __call__(self, event: Commitment, target_name: str) -> None:
        if self._svc is None:
            self._svc = self._service_factory()
        created = self._svc.events().insert(calendarId=self.calendar_id, body=event_body(event, target_name)).execute()
        log.info("gcal_event_created", event_id=event.id, gcal_id=(created or {}).get("id"))
