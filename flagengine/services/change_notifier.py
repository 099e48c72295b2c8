"""Cross-instance snapshot propagation.

Each instance keeps its own published snapshot. Two mechanisms bound how long
a replica can serve a configuration another replica already replaced:

- Interval refresh: the snapshot is reloaded from the store every
  ``SNAPSHOT_REFRESH_SECONDS``.
- Push notification (optional, needs ``REDIS_URL``): after every local
  publication a small message is published on ``FLAG_CHANGE_CHANNEL``; other
  instances reload as soon as they receive it. Messages carry the sender's
  instance id so an instance ignores its own notifications.

Redis is never on the write path: ``on_publish`` only queues the message and a
sender thread talks to Redis. A failed notification is logged and counted,
the mutation stays committed and other replicas converge at the next interval
refresh. When the queue is full new notifications are dropped.
"""

from __future__ import annotations

import json
import queue
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import redis
from flagengine.core.config import settings
from flagengine.core.logging import get_logger
from flagengine.core.metrics import change_notifications_total
from flagengine.core.resilience import redis_breaker, retry_redis_operation
from flagengine.services.coordinator import ConcurrencyCoordinator
from pybreaker import CircuitBreakerError
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

logger = get_logger(__name__)


class ChangeNotifier:
    """Keeps the local snapshot in step with the store and with other instances."""

    def __init__(
        self,
        coordinator: ConcurrencyCoordinator,
        redis_client: Optional[redis.Redis] = None,
        channel: str = settings.FLAG_CHANGE_CHANNEL,
        refresh_seconds: float = settings.SNAPSHOT_REFRESH_SECONDS,
        queue_size: int = settings.CHANGE_QUEUE_SIZE,
    ):
        self._coordinator = coordinator
        self._redis = redis_client
        self._channel = channel
        self._refresh_seconds = refresh_seconds
        self._outbox: "queue.Queue[str]" = queue.Queue(maxsize=queue_size)
        self.instance_id = uuid.uuid4().hex
        self._stop = threading.Event()
        self._threads: list = []
        self._pubsub = None
        self.logger = get_logger(__name__)

    @classmethod
    def from_settings(cls, coordinator: ConcurrencyCoordinator) -> "ChangeNotifier":
        client = None
        if settings.REDIS_URL:
            client = redis.Redis.from_url(
                settings.REDIS_URL,
                decode_responses=True,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=settings.REDIS_CONNECT_TIMEOUT,
            )
        return cls(coordinator, redis_client=client)

    @property
    def push_enabled(self) -> bool:
        return self._redis is not None

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def on_publish(self, kind: str, flag_key: str) -> None:
        """Coordinator listener: queue an announcement of a local publication.

        Never blocks; the sender thread delivers it.
        """
        if self._redis is None:
            return

        message = {
            "instance_id": self.instance_id,
            "kind": kind,
            "flag_key": flag_key,
            "snapshot_version": self._coordinator.snapshot.version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self._outbox.put_nowait(json.dumps(message))
        except queue.Full:
            change_notifications_total.labels(direction="out", outcome="dropped").inc()
            self.logger.warning("change_notification_dropped", flag_key=flag_key, kind=kind)

    @property
    def pending(self) -> int:
        return self._outbox.qsize()

    def send_pending(self) -> int:
        """Deliver every queued notification now. Returns the number attempted."""
        sent = 0
        while True:
            try:
                payload = self._outbox.get_nowait()
            except queue.Empty:
                return sent
            self._send(payload)
            sent += 1

    def _send(self, payload: str) -> bool:
        try:
            self._publish(payload)
        except (RedisError, CircuitBreakerError) as e:
            change_notifications_total.labels(direction="out", outcome="failed").inc()
            self.logger.warning("change_notification_publish_failed", error=str(e))
            return False
        change_notifications_total.labels(direction="out", outcome="sent").inc()
        return True

    def _send_loop(self) -> None:
        while not self._stop.is_set():
            try:
                payload = self._outbox.get(timeout=1.0)
            except queue.Empty:
                continue
            self._send(payload)

    @retry_redis_operation()
    @redis_breaker
    def _publish(self, payload: str) -> None:
        self._redis.publish(self._channel, payload)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def handle_message(self, data: Any) -> bool:
        """Reload the snapshot for a notification from another instance.

        Returns:
            True if a reload was triggered
        """
        try:
            message: Dict[str, Any] = json.loads(data)
        except (TypeError, ValueError):
            change_notifications_total.labels(direction="in", outcome="malformed").inc()
            self.logger.warning("change_notification_malformed", data=str(data)[:200])
            return False

        if message.get("instance_id") == self.instance_id:
            change_notifications_total.labels(direction="in", outcome="own").inc()
            return False

        change_notifications_total.labels(direction="in", outcome="applied").inc()
        self.logger.info(
            "change_notification_received",
            flag_key=message.get("flag_key"),
            kind=message.get("kind"),
            source=message.get("instance_id"),
        )
        self._coordinator.reload(trigger="notification")
        return True

    def _listen(self) -> None:
        try:
            self._pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(self._channel)
        except RedisError as e:
            self.logger.warning("change_notification_subscribe_failed", channel=self._channel, error=str(e))
            return

        self.logger.info("change_notification_subscribed", channel=self._channel, instance_id=self.instance_id)
        while not self._stop.is_set():
            try:
                message = self._pubsub.get_message(timeout=1.0)
                if message and message.get("type") == "message":
                    self.handle_message(message.get("data"))
            except RedisError as e:
                self.logger.warning("change_notification_listen_error", error=str(e))
                self._stop.wait(self._refresh_seconds)
            except SQLAlchemyError as e:
                self.logger.warning("snapshot_reload_failed", trigger="notification", error=str(e))

    # ------------------------------------------------------------------
    # Interval refresh
    # ------------------------------------------------------------------

    def _refresh_loop(self) -> None:
        while not self._stop.wait(self._refresh_seconds):
            try:
                self._coordinator.reload(trigger="interval")
            except SQLAlchemyError as e:
                # Keep serving the last good snapshot
                self.logger.warning("snapshot_reload_failed", trigger="interval", error=str(e))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the refresh thread and, when Redis is configured, the subscriber."""
        if self._threads:
            return
        self._stop.clear()

        if self._refresh_seconds and self._refresh_seconds > 0:
            self._threads.append(threading.Thread(target=self._refresh_loop, name="snapshot-refresh", daemon=True))
        if self._redis is not None:
            self._threads.append(threading.Thread(target=self._listen, name="change-listener", daemon=True))
            self._threads.append(threading.Thread(target=self._send_loop, name="change-sender", daemon=True))

        for thread in self._threads:
            thread.start()
        self.logger.info(
            "change_notifier_started",
            refresh_seconds=self._refresh_seconds,
            push_enabled=self.push_enabled,
        )

    def stop(self) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout=5)
        self._threads = []
        if self._pubsub is not None:
            try:
                self._pubsub.close()
            except RedisError as e:
                self.logger.warning("change_notification_close_failed", error=str(e))
            self._pubsub = None
        self.logger.info("change_notifier_stopped")

    @retry_redis_operation()
    @redis_breaker
    def _ping(self) -> None:
        self._redis.ping()

    def check_connection(self) -> Optional[bool]:
        """Redis reachability, or None when push notifications are disabled."""
        if self._redis is None:
            return None
        try:
            self._ping()
            return True
        except (RedisError, CircuitBreakerError) as e:
            self.logger.warning("redis_check_failed", error=str(e))
            return False
