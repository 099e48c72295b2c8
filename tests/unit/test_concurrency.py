"""Concurrency tests: per-key write serialization and cross-instance conflicts.

These tests use a file-backed SQLite database so every thread and every engine
instance gets its own connection.
"""

import threading

import pytest
from flagengine.core.database import build_engine, init_db
from flagengine.core.errors import ConflictError
from flagengine.models.feature_flag import FeatureFlag
from flagengine.services.coordinator import ConcurrencyCoordinator
from flagengine.services.engine import FlagEngine
from flagengine.services.flag_registry import FlagCreate, FlagPatch
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError


@pytest.fixture
def file_session_factory(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'flags.db'}")
    init_db(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    engine.dispose()


class TestKeyLock:
    def test_same_key_is_serialized(self):
        coordinator = ConcurrencyCoordinator()
        holding = threading.Event()
        release = threading.Event()
        acquired = threading.Event()

        def holder():
            with coordinator.key_lock("dark-mode"):
                holding.set()
                release.wait(5)

        def contender():
            with coordinator.key_lock("dark-mode"):
                acquired.set()

        first = threading.Thread(target=holder)
        first.start()
        holding.wait(5)
        second = threading.Thread(target=contender)
        second.start()

        assert not acquired.wait(0.2)
        release.set()
        assert acquired.wait(5)
        first.join()
        second.join()

    def test_different_keys_run_in_parallel(self):
        coordinator = ConcurrencyCoordinator()
        holding = threading.Event()
        release = threading.Event()
        acquired = threading.Event()

        def holder():
            with coordinator.key_lock("dark-mode"):
                holding.set()
                release.wait(5)

        def other_key():
            with coordinator.key_lock("payments"):
                acquired.set()

        first = threading.Thread(target=holder)
        first.start()
        holding.wait(5)
        second = threading.Thread(target=other_key)
        second.start()

        assert acquired.wait(2)
        release.set()
        first.join()
        second.join()


class TestConcurrentMutations:
    def test_concurrent_toggles_on_one_key(self, file_session_factory, admin):
        engine = FlagEngine(session_factory=file_session_factory)
        engine.coordinator.reload()
        engine.registry.create(FlagCreate(key="dark-mode", name="Dark mode"), admin)

        errors = []

        def toggle(i):
            try:
                engine.registry.toggle("dark-mode", i % 2 == 0, admin)
            except Exception as e:  # pragma: no cover - surfaced by the assertion below
                errors.append(e)

        threads = [threading.Thread(target=toggle, args=(i,)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        flag = engine.registry.get("dark-mode")
        assert flag.version == 10
        assert len(engine.ledger.for_flag("dark-mode")) == 11
        assert engine.snapshot.get_flag("dark-mode").version == 10

    def test_stale_version_from_another_instance(self, file_session_factory, admin):
        first = FlagEngine(session_factory=file_session_factory)
        second = FlagEngine(session_factory=file_session_factory)
        first.registry.create(FlagCreate(key="dark-mode", name="Dark mode"), admin)

        first.registry.update("dark-mode", FlagPatch(rollout_percentage=10), 0, admin)
        with pytest.raises(ConflictError):
            second.registry.update("dark-mode", FlagPatch(rollout_percentage=20), 0, admin)

        assert second.registry.get("dark-mode").rollout_percentage == 10

    def test_duplicate_create_from_another_instance(self, file_session_factory, admin):
        first = FlagEngine(session_factory=file_session_factory)
        second = FlagEngine(session_factory=file_session_factory)
        first.registry.create(FlagCreate(key="dark-mode", name="Dark mode"), admin)

        with pytest.raises(ConflictError):
            second.registry.create(FlagCreate(key="dark-mode", name="Dark mode"), admin)

    def test_version_counter_rejects_lost_update(self, file_session_factory, admin):
        """A row changed behind a session's back fails its flush."""
        engine = FlagEngine(session_factory=file_session_factory)
        engine.registry.create(FlagCreate(key="dark-mode", name="Dark mode"), admin)

        stale = file_session_factory()
        try:
            flag = stale.query(FeatureFlag).filter(FeatureFlag.key == "dark-mode").one()
            engine.registry.toggle("dark-mode", True, admin)

            flag.rollout_percentage = 99
            with pytest.raises(StaleDataError):
                stale.flush()
            stale.rollback()
        finally:
            stale.close()

    def test_reload_picks_up_other_instance_changes(self, file_session_factory, admin):
        first = FlagEngine(session_factory=file_session_factory)
        second = FlagEngine(session_factory=file_session_factory)
        second.coordinator.reload()
        first.registry.create(FlagCreate(key="dark-mode", name="Dark mode", enabled=True), admin)

        assert second.snapshot.get_flag("dark-mode") is None
        second.coordinator.reload(trigger="interval")
        assert second.snapshot.get_flag("dark-mode").enabled is True
