"""Video meeting provisioning clients.

The scheduling engine treats meetings as opaque metadata attached to a
scheduled lesson. Provisioning is best-effort: callers log and continue on
``MeetingProviderError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
import logging
from typing import Any, Dict, Optional, Protocol, cast
import uuid

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)


class MeetingProviderError(RuntimeError):
    """Raised when the meeting provider responds with an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class MeetingDetails:
    meeting_id: str
    join_url: str
    password: Optional[str] = None


class MeetingProvider(Protocol):
    def create_meeting(
        self, *, lesson_id: str, topic: str, start_utc: datetime, duration_minutes: int
    ) -> MeetingDetails:
        ...

    def delete_meeting(self, meeting_id: str) -> None:
        ...


class HttpMeetingClient:
    """HTTP client for a REST meeting provider (create / delete meeting)."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | SecretStr,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key.get_secret_value() if isinstance(api_key, SecretStr) else api_key
        self._timeout = timeout

    def _request(
        self, method: str, path: str, *, json_body: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"}
        try:
            with httpx.Client(timeout=self._timeout) as client:
                response = client.request(method, url, headers=headers, json=json_body)
        except httpx.TransportError as exc:
            logger.error("Meeting API unreachable for %s %s: %s", method, path, exc)
            raise MeetingProviderError(f"Meeting API unreachable: {exc}") from exc

        if response.status_code >= 400:
            logger.error(
                "Meeting API error %s for %s %s: %s",
                response.status_code,
                method,
                path,
                response.text[:500],
            )
            raise MeetingProviderError(response.text[:500], status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return {}
        return cast(dict[str, Any], response.json())

    def create_meeting(
        self, *, lesson_id: str, topic: str, start_utc: datetime, duration_minutes: int
    ) -> MeetingDetails:
        body = self._request(
            "POST",
            "/meetings",
            json_body={
                "topic": topic,
                "start_time": start_utc.isoformat(),
                "duration": duration_minutes,
                "external_id": lesson_id,
            },
        )
        try:
            return MeetingDetails(
                meeting_id=str(body["id"]),
                join_url=str(body["join_url"]),
                password=body.get("password"),
            )
        except KeyError as exc:
            raise MeetingProviderError(f"Malformed meeting response: missing {exc}") from exc

    def delete_meeting(self, meeting_id: str) -> None:
        self._request("DELETE", f"/meetings/{meeting_id}")


class FakeMeetingClient:
    """In-memory stand-in used when no provider is configured."""

    def __init__(self) -> None:
        self.meetings: Dict[str, Dict[str, Any]] = {}
        self._logger = logging.getLogger(self.__class__.__name__)

    def create_meeting(
        self, *, lesson_id: str, topic: str, start_utc: datetime, duration_minutes: int
    ) -> MeetingDetails:
        meeting_id = f"fake-meeting-{uuid.uuid4().hex[:12]}"
        self.meetings[meeting_id] = {
            "lesson_id": lesson_id,
            "topic": topic,
            "start_utc": start_utc,
            "duration": duration_minutes,
        }
        self._logger.debug("Fake meeting created", extra={"meeting_id": meeting_id})
        return MeetingDetails(
            meeting_id=meeting_id,
            join_url=f"https://meet.example.invalid/j/{meeting_id}",
            password=uuid.uuid4().hex[:8],
        )

    def delete_meeting(self, meeting_id: str) -> None:
        self.meetings.pop(meeting_id, None)
