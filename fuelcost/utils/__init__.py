from .api_responses import APIResponse
from .timezone_utils import TimezoneUtils

__all__ = [
    "APIResponse",
    "TimezoneUtils",
]
