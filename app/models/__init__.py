"""
Models Package - Business logic models
Capture session and event fan-out, separated from Flask routes
"""

from .capture_service import CaptureService, SessionNotActiveError
from .event_broadcaster import EventBroadcaster, get_event_broadcaster

__all__ = [
    'CaptureService',
    'SessionNotActiveError',
    'EventBroadcaster',
    'get_event_broadcaster',
]
