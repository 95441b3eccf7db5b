"""
Event Broadcaster - Server-Sent Events (SSE) fan-out for capture sessions
Numbered events, per-client type filters and a short replay history so a
reconnecting browser (Last-Event-ID) does not miss a pose or completion event
"""
import itertools
import json
import queue
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, FrozenSet, Iterable, List, Optional, Tuple


@dataclass(eq=False)
class EventClient:
    """One connected SSE consumer"""
    queue: queue.Queue
    event_types: Optional[FrozenSet[str]] = None
    connected_at: datetime = field(default_factory=datetime.now)

    def wants(self, event_type: str) -> bool:
        return self.event_types is None or event_type in self.event_types


class EventBroadcaster:
    """Fans capture events out to per-client queues; slow clients are dropped"""

    def __init__(self, logger=None, queue_size: int = 50, history_size: int = 20):
        self.logger = logger
        self.queue_size = queue_size
        self._clients: List[EventClient] = []
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        # (event id, event type, formatted message)
        self._history: Deque[Tuple[int, str, str]] = deque(maxlen=history_size)

    def add_client(self, event_types: Optional[Iterable[str]] = None,
                   last_event_id: Optional[int] = None) -> EventClient:
        """
        Register a client

        Args:
            event_types: only these event types are delivered (all when None)
            last_event_id: replay retained events newer than this id
        """
        client = EventClient(
            queue=queue.Queue(maxsize=self.queue_size),
            event_types=frozenset(event_types) if event_types else None,
        )

        with self._lock:
            if last_event_id is not None:
                missed = [message for event_id, event_type, message in self._history
                          if event_id > last_event_id and client.wants(event_type)]
                for message in missed[-self.queue_size:]:
                    client.queue.put_nowait(message)
            self._clients.append(client)
            total = len(self._clients)

        if self.logger:
            self.logger.info(f"[SSE] ✅ Client connected. Total: {total}")
        return client

    def remove_client(self, client: EventClient):
        with self._lock:
            if client not in self._clients:
                return
            self._clients.remove(client)
            remaining = len(self._clients)
        if self.logger:
            self.logger.info(f"[SSE] Client disconnected. Remaining: {remaining}")

    def broadcast_event(self, event_type: str, data: Dict[str, Any]) -> int:
        """Number, record and deliver one event; returns its id"""
        payload = {
            'type': event_type,
            'data': data,
            'timestamp': datetime.now().isoformat(),
        }

        slow_clients = []
        with self._lock:
            event_id = next(self._ids)
            message = self.format_sse_message(payload, event_id)
            self._history.append((event_id, event_type, message))
            for client in self._clients:
                if not client.wants(event_type):
                    continue
                try:
                    client.queue.put_nowait(message)
                except queue.Full:
                    slow_clients.append(client)
            delivered = len(self._clients) - len(slow_clients)

        for client in slow_clients:
            if self.logger:
                self.logger.warning("[SSE] Client queue full, dropping client")
            self.remove_client(client)

        if self.logger and delivered:
            self.logger.debug(f"[SSE] #{event_id} {event_type} -> {delivered} clients")
        return event_id

    @staticmethod
    def format_sse_message(event_data: Dict[str, Any], event_id: Optional[int] = None) -> str:
        lines = []
        if event_id is not None:
            lines.append(f"id: {event_id}")
        lines.append(f"event: {event_data.get('type', 'message')}")
        lines.append(f"data: {json.dumps(event_data)}")
        return "\n".join(lines) + "\n\n"

    def broadcast_capture_event(self, event_type: str, data: Dict[str, Any]) -> int:
        return self.broadcast_event(event_type, data)

    def broadcast_camera_status(self, enabled: bool, ready: bool = False) -> int:
        return self.broadcast_event('camera_status', {'enabled': enabled, 'ready': ready})

    def get_client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def cleanup(self):
        with self._lock:
            self._clients.clear()
            self._history.clear()
        if self.logger:
            self.logger.info("[SSE] All clients removed")


# Singleton instance
_broadcaster_instance = None
_broadcaster_lock = threading.Lock()


def get_event_broadcaster(logger=None, queue_size: int = 50) -> EventBroadcaster:
    """Process-wide broadcaster shared by every app instance"""
    global _broadcaster_instance

    if _broadcaster_instance is None:
        with _broadcaster_lock:
            if _broadcaster_instance is None:
                _broadcaster_instance = EventBroadcaster(logger=logger, queue_size=queue_size)

    return _broadcaster_instance
