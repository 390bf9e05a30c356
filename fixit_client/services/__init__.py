"""Services package for the FixIT client"""

from .api_client import (
    ClientValidationError,
    FixitAPIClient,
    FixitAPIError,
    HelperSuggestion,
    HelperSuggestions,
)
from .event_parser import RealtimeEventParser
from .notifications import NotificationCenter
from .realtime_client import RealtimeClient, RealtimeNotConnectedError

__all__ = [
    "ClientValidationError",
    "FixitAPIClient",
    "FixitAPIError",
    "HelperSuggestion",
    "HelperSuggestions",
    "NotificationCenter",
    "RealtimeClient",
    "RealtimeEventParser",
    "RealtimeNotConnectedError",
]
