"""
Real-time Notification Broadcaster

Keeps track of which connected clients listen on which channel and pushes
review events to them. A user's personal channel is ``user_<id>`` and a
team's shared channel is ``team_<id>``.

Delivery is best-effort: a failed send drops the connection, is logged,
and never propagates into the review pipeline.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Set

from prreview.monitoring import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)

# Event names
REVIEW_CREATED = "review-created"
REVIEW_UPDATED = "review-updated"
REVIEW_COMPLETED = "review-completed"
ROOM_JOINED = "room-joined"
ROOM_LEFT = "room-left"


class Connection(Protocol):
    """Anything that can send a JSON message (e.g. a FastAPI WebSocket)."""

    async def send_json(self, data: Any) -> None:
        ...


def user_channel(user_id: Any) -> str:
    return f"user_{user_id}"


def team_channel(team_id: Any) -> str:
    return f"team_{team_id}"


def build_event_payload(review_id: int, **fields: Any) -> Dict[str, Any]:
    """
    Build an event payload carrying the review id and a timestamp.

    Args:
        review_id: Review the event is about
        **fields: Event-specific fields (camelCase keys)

    Returns:
        Payload dictionary with ``reviewId`` and ISO-8601 ``timestamp``
    """
    payload: Dict[str, Any] = {"reviewId": review_id}
    payload.update(fields)
    payload["timestamp"] = datetime.now(timezone.utc).isoformat()
    return payload


class NotificationBroadcaster:
    """
    Channel-based fan-out of review events to connected clients.

    One instance is created at application startup and shared by the
    WebSocket endpoint and the review pipeline.
    """

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self._channels: Dict[str, Set[Connection]] = {}
        self.metrics = metrics or get_metrics()

    # ========================================================================
    # Subscriptions
    # ========================================================================

    def subscribe(self, channel: str, connection: Connection) -> None:
        """Add a connection to a channel."""
        self._channels.setdefault(channel, set()).add(connection)
        logger.info(
            f"Client joined {channel} ({len(self._channels[channel])} client(s))"
        )
        self._update_connection_gauge()

    def unsubscribe(self, channel: str, connection: Connection) -> None:
        """Remove a connection from a channel; unknown pairs are ignored."""
        members = self._channels.get(channel)
        if not members:
            return
        members.discard(connection)
        if not members:
            del self._channels[channel]
        logger.info(f"Client left {channel}")
        self._update_connection_gauge()

    def disconnect(self, connection: Connection) -> None:
        """Remove a connection from every channel."""
        for channel in list(self._channels):
            members = self._channels[channel]
            members.discard(connection)
            if not members:
                del self._channels[channel]
        self._update_connection_gauge()

    def client_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    def _update_connection_gauge(self) -> None:
        connections: Set[Connection] = set()
        for members in self._channels.values():
            connections |= members
        gauge = self.metrics.get_metric("realtime_connections")
        if gauge is not None:
            gauge.set(len(connections))

    # ========================================================================
    # Delivery
    # ========================================================================

    async def broadcast(
        self,
        user_id: Any,
        team_id: Optional[Any],
        event: str,
        payload: Dict[str, Any],
    ) -> int:
        """
        Send an event to a user's channel and, if given, their team's channel.

        A connection subscribed to both channels receives the event once.

        Args:
            user_id: Reviewer the event belongs to
            team_id: Team of the reviewer (None for personal repositories)
            event: Event name
            payload: Event data

        Returns:
            Number of connections the event was delivered to
        """
        channels = [user_channel(user_id)]
        if team_id:
            channels.append(team_channel(team_id))

        recipients: Set[Connection] = set()
        for channel in channels:
            recipients |= self._channels.get(channel, set())

        if not recipients:
            logger.warning(
                f"No clients connected to {', '.join(channels)}; "
                f"'{event}' not delivered"
            )
            return 0

        message = {"event": event, "data": payload}
        delivered = 0
        for connection in list(recipients):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Dropping client after failed '{event}' send: {e}")
                self.metrics.increment("notification_failures_total")
                self.disconnect(connection)
                continue
            delivered += 1

        self.metrics.increment("notifications_sent_total", delivered)
        logger.info(
            f"Broadcast '{event}' to {delivered} client(s) via {', '.join(channels)}"
        )
        return delivered
