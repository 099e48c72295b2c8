"""Unit tests for cross-instance change notifications."""

import json
import time
from unittest.mock import MagicMock

from flagengine.core.actor import Actor
from flagengine.core.config import settings
from flagengine.services.change_notifier import ChangeNotifier
from flagengine.services.engine import FlagEngine
from flagengine.services.flag_registry import FlagCreate
from redis.exceptions import ConnectionError as RedisConnectionError


class TestChangeNotifier:
    def test_publication_is_announced(self, session_factory):
        redis_client = MagicMock()
        engine = FlagEngine(session_factory=session_factory)
        notifier = ChangeNotifier(engine.coordinator, redis_client=redis_client, channel="test:changes")
        engine.coordinator.add_listener(notifier.on_publish)

        engine.registry.create(FlagCreate(key="dark-mode", name="Dark mode"), Actor(actor_id="ops"))
        redis_client.publish.assert_not_called()
        assert notifier.send_pending() == 1

        channel, payload = redis_client.publish.call_args[0]
        message = json.loads(payload)
        assert channel == "test:changes"
        assert message["flag_key"] == "dark-mode"
        assert message["kind"] == "flag"
        assert message["instance_id"] == notifier.instance_id

    def test_redis_failure_does_not_fail_mutation(self, flag_engine, admin):
        notifier = ChangeNotifier(flag_engine.coordinator, redis_client=MagicMock())
        notifier._publish = MagicMock(side_effect=RedisConnectionError("connection refused"))
        flag_engine.coordinator.add_listener(notifier.on_publish)

        view = flag_engine.registry.create(FlagCreate(key="dark-mode", name="Dark mode"), admin)
        assert view.version == 0
        assert flag_engine.snapshot.get_flag("dark-mode") is not None

        assert notifier.send_pending() == 1
        assert notifier.pending == 0

    def test_unreachable_redis_does_not_slow_writes(self, flag_engine, admin):
        redis_client = MagicMock()
        redis_client.publish.side_effect = RedisConnectionError("connection refused")
        notifier = ChangeNotifier(flag_engine.coordinator, redis_client=redis_client)
        flag_engine.coordinator.add_listener(notifier.on_publish)

        started = time.perf_counter()
        flag_engine.registry.create(FlagCreate(key="dark-mode", name="Dark mode"), admin)
        flag_engine.registry.toggle("dark-mode", True, admin)
        elapsed = time.perf_counter() - started

        assert elapsed < 0.5
        assert notifier.pending == 2
        redis_client.publish.assert_not_called()

    def test_full_queue_drops_notifications(self, flag_engine):
        notifier = ChangeNotifier(flag_engine.coordinator, redis_client=MagicMock(), queue_size=1)

        notifier.on_publish("flag", "a-flag")
        notifier.on_publish("flag", "b-flag")

        assert notifier.pending == 1

    def test_client_from_settings_has_socket_timeouts(self, flag_engine, monkeypatch):
        monkeypatch.setattr(settings, "REDIS_URL", "redis://localhost:6379/0")

        notifier = ChangeNotifier.from_settings(flag_engine.coordinator)

        connection_kwargs = notifier._redis.connection_pool.connection_kwargs
        assert connection_kwargs["socket_timeout"] == settings.REDIS_SOCKET_TIMEOUT
        assert connection_kwargs["socket_connect_timeout"] == settings.REDIS_CONNECT_TIMEOUT

    def test_own_messages_are_ignored(self, flag_engine):
        flag_engine.coordinator.reload = MagicMock()
        notifier = ChangeNotifier(flag_engine.coordinator, redis_client=MagicMock())

        own = json.dumps({"instance_id": notifier.instance_id, "kind": "flag", "flag_key": "x"})
        assert notifier.handle_message(own) is False
        flag_engine.coordinator.reload.assert_not_called()

    def test_foreign_message_triggers_reload(self, flag_engine):
        flag_engine.coordinator.reload = MagicMock()
        notifier = ChangeNotifier(flag_engine.coordinator, redis_client=MagicMock())

        foreign = json.dumps({"instance_id": "other-replica", "kind": "kill_switch", "flag_key": "x"})
        assert notifier.handle_message(foreign) is True
        flag_engine.coordinator.reload.assert_called_once_with(trigger="notification")

    def test_malformed_message(self, flag_engine):
        notifier = ChangeNotifier(flag_engine.coordinator, redis_client=MagicMock())
        assert notifier.handle_message("not json") is False

    def test_push_disabled_without_redis(self, flag_engine):
        notifier = ChangeNotifier(flag_engine.coordinator, redis_client=None)
        notifier.on_publish("flag", "dark-mode")
        assert notifier.push_enabled is False
        assert notifier.pending == 0
        assert notifier.check_connection() is None
