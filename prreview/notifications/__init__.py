"""
Notifications Package

Real-time delivery of review events to connected clients.
"""

from prreview.notifications.broadcaster import (
    REVIEW_COMPLETED,
    REVIEW_CREATED,
    REVIEW_UPDATED,
    NotificationBroadcaster,
    build_event_payload,
    team_channel,
    user_channel,
)

__all__ = [
    "REVIEW_COMPLETED",
    "REVIEW_CREATED",
    "REVIEW_UPDATED",
    "NotificationBroadcaster",
    "build_event_payload",
    "team_channel",
    "user_channel",
]
