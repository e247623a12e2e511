"""External service integrations for the TutorDesk platform."""

from .meeting_client import (
    FakeMeetingClient,
    HttpMeetingClient,
    MeetingDetails,
    MeetingProvider,
    MeetingProviderError,
)

__all__ = [
    "FakeMeetingClient",
    "HttpMeetingClient",
    "MeetingDetails",
    "MeetingProvider",
    "MeetingProviderError",
]
