"""TestTrack split assignment for web visitors.

Public API:
- Session: one request/response turn of visitor state, cookies and notification
- VisitorDSL: caller-facing view of the session's current visitor
- Visitor, Assignment, SplitRegistry: the assignment data model
- calculate_variant: deterministic variant calculation
- TestTrackClient: HTTP client for the TestTrack API
- TestTrackMiddleware: FastAPI/Starlette integration
"""

from testtrack.core.config import Settings
from testtrack.core.middleware import TestTrackMiddleware
from testtrack.models import Assignment, SplitRegistry, Visitor
from testtrack.services.notifications import NotificationDispatcher, NotificationJob
from testtrack.services.remote import RemoteServiceError, TestTrackClient
from testtrack.services.session import Session, SessionClosedError, VisitorDSL
from testtrack.services.variant_calculator import calculate_variant

__all__ = [
    "Assignment",
    "NotificationDispatcher",
    "NotificationJob",
    "RemoteServiceError",
    "Session",
    "SessionClosedError",
    "Settings",
    "SplitRegistry",
    "TestTrackClient",
    "TestTrackMiddleware",
    "Visitor",
    "VisitorDSL",
    "calculate_variant",
]
