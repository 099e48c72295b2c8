"""Flag Registry.

CRUD over flag configuration with key uniqueness, field validation and
optimistic concurrency. Every mutation runs as one unit of work:

    key lock -> transaction(read, validate, mutate, audit append) -> commit
             -> publish snapshot -> release key lock

If any step before commit fails (validation, version conflict, audit
append) the transaction rolls back and nothing is published.

Usage:
    from flagengine.services.flag_registry import FlagCreate, FlagPatch

    flag = registry.create(FlagCreate(key="dark-mode", name="Dark mode"), actor)
    flag = registry.update("dark-mode", FlagPatch(rollout_percentage=50), flag.version, actor)
    flag = registry.toggle("dark-mode", True, actor)
    registry.archive("dark-mode", actor)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from flagengine.core.actor import Actor
from flagengine.core.config import settings
from flagengine.core.database import SessionLocal, transaction
from flagengine.core.errors import ConflictError, InvalidArgumentError, NotFoundError
from flagengine.core.logging import get_logger
from flagengine.core.metrics import flag_mutation_conflicts_total, flag_mutations_total
from flagengine.models.audit_log import AuditAction
from flagengine.models.feature_flag import FeatureFlag, utcnow
from flagengine.services.audit_ledger import AuditLedger
from flagengine.services.coordinator import ConcurrencyCoordinator
from flagengine.services.snapshot import FlagView
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

logger = get_logger(__name__)

FLAG_KEY_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


@dataclass(frozen=True)
class FlagCreate:
    """Fields of a new flag."""

    key: str
    name: str
    description: Optional[str] = None
    enabled: bool = False
    rollout_percentage: int = 0
    target_user_ids: Iterable[str] = ()
    excluded_user_ids: Iterable[str] = ()


@dataclass(frozen=True)
class FlagPatch:
    """Partial update. ``None`` leaves a field unchanged.

    ``key`` may be supplied (clients often echo the whole record back) but
    must equal the current key.
    """

    key: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: Optional[bool] = None
    rollout_percentage: Optional[int] = None
    target_user_ids: Optional[Iterable[str]] = None
    excluded_user_ids: Optional[Iterable[str]] = None


# ----------------------------------------------------------------------
# Validation
# ----------------------------------------------------------------------


def validate_key(key: Optional[str]) -> str:
    if key is None or not key.strip():
        raise InvalidArgumentError("Flag key must not be empty", field="key")
    if len(key) > settings.FLAG_KEY_MAX_LENGTH:
        raise InvalidArgumentError(
            f"Flag key must be at most {settings.FLAG_KEY_MAX_LENGTH} characters",
            field="key",
        )
    if not FLAG_KEY_PATTERN.match(key):
        raise InvalidArgumentError(
            f"Flag key '{key}' must be lowercase letters and digits separated by single hyphens",
            field="key",
        )
    return key


def validate_name(name: Optional[str]) -> str:
    if name is None or not name.strip():
        raise InvalidArgumentError("Flag name must not be empty", field="name")
    if len(name) > settings.FLAG_NAME_MAX_LENGTH:
        raise InvalidArgumentError(
            f"Flag name must be at most {settings.FLAG_NAME_MAX_LENGTH} characters",
            field="name",
        )
    return name.strip()


def validate_description(description: Optional[str]) -> Optional[str]:
    if description is not None and len(description) > settings.FLAG_DESCRIPTION_MAX_LENGTH:
        raise InvalidArgumentError(
            f"Description must be at most {settings.FLAG_DESCRIPTION_MAX_LENGTH} characters",
            field="description",
        )
    return description


def validate_rollout(percentage) -> int:
    # bool is an int subclass; True must not silently mean 1%
    if isinstance(percentage, bool) or not isinstance(percentage, int):
        raise InvalidArgumentError("Rollout percentage must be an integer", field="rollout_percentage")
    if not 0 <= percentage <= 100:
        raise InvalidArgumentError(
            f"Rollout percentage must be between 0 and 100, got {percentage}",
            field="rollout_percentage",
        )
    return percentage


def normalize_user_ids(user_ids: Optional[Iterable[str]], field: str) -> List[str]:
    if user_ids is None:
        return []
    if isinstance(user_ids, str):
        raise InvalidArgumentError(f"{field} must be a list of user ids", field=field)
    normalized = set()
    for user_id in user_ids:
        if not isinstance(user_id, str) or not user_id.strip():
            raise InvalidArgumentError(f"{field} must contain non-empty strings", field=field)
        normalized.add(user_id.strip())
    return sorted(normalized)


# ----------------------------------------------------------------------
# Registry
# ----------------------------------------------------------------------


class FlagRegistry:
    """Owns FeatureFlag records."""

    def __init__(
        self,
        coordinator: ConcurrencyCoordinator,
        ledger: AuditLedger,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self._coordinator = coordinator
        self._ledger = ledger
        self._session_factory = session_factory
        self.logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: str, include_archived: bool = False, db: Optional[Session] = None) -> FlagView:
        """Get a flag by key.

        Args:
            key: Flag key
            include_archived: Administrative lookup that also returns archived flags
            db: Optional database session

        Raises:
            NotFoundError: if absent, or archived and ``include_archived`` is False
        """
        should_close_db = False
        if db is None:
            db = self._session_factory()
            should_close_db = True

        try:
            flag = db.query(FeatureFlag).filter(FeatureFlag.key == key).first()
            if flag is None or (flag.archived and not include_archived):
                raise NotFoundError(f"Feature flag '{key}' not found")
            return FlagView.from_model(flag)
        finally:
            if should_close_db:
                db.close()

    def get_by_id(self, flag_id: int, include_archived: bool = False, db: Optional[Session] = None) -> FlagView:
        """Get a flag by its surrogate id."""
        should_close_db = False
        if db is None:
            db = self._session_factory()
            should_close_db = True

        try:
            flag = db.get(FeatureFlag, flag_id)
            if flag is None or (flag.archived and not include_archived):
                raise NotFoundError(f"Feature flag {flag_id} not found")
            return FlagView.from_model(flag)
        finally:
            if should_close_db:
                db.close()

    def list(self, include_archived: bool = False, db: Optional[Session] = None) -> List[FlagView]:
        """List flags ordered by key, excluding archived ones by default."""
        should_close_db = False
        if db is None:
            db = self._session_factory()
            should_close_db = True

        try:
            query = db.query(FeatureFlag)
            if not include_archived:
                query = query.filter(FeatureFlag.archived == False)  # noqa: E712
            return [FlagView.from_model(flag) for flag in query.order_by(FeatureFlag.key).all()]
        finally:
            if should_close_db:
                db.close()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create(self, data: FlagCreate, actor: Actor) -> FlagView:
        """Create a new flag at version 0 and record a CREATE entry.

        Raises:
            InvalidArgumentError: malformed key, empty name, rollout outside [0, 100]
            ConflictError: the key already exists (archived flags included)
        """
        key = validate_key(data.key)
        name = validate_name(data.name)
        description = validate_description(data.description)
        rollout = validate_rollout(data.rollout_percentage)
        targets = normalize_user_ids(data.target_user_ids, "target_user_ids")
        excluded = normalize_user_ids(data.excluded_user_ids, "excluded_user_ids")

        with self._coordinator.key_lock(key):
            db = self._session_factory()
            try:
                with transaction(db):
                    if db.query(FeatureFlag.id).filter(FeatureFlag.key == key).first() is not None:
                        raise ConflictError(f"Feature flag with key '{key}' already exists", field="key")

                    flag = FeatureFlag(
                        key=key,
                        name=name,
                        description=description,
                        enabled=bool(data.enabled),
                        rollout_percentage=rollout,
                        target_user_ids=targets,
                        excluded_user_ids=excluded,
                        archived=False,
                    )
                    db.add(flag)
                    db.flush()

                    view = FlagView.from_model(flag)
                    self._ledger.append(
                        db,
                        AuditAction.CREATE,
                        key,
                        actor,
                        f"Created feature flag '{key}'",
                        new_value=view.to_dict(),
                    )
            except IntegrityError as e:
                # Unique constraint hit by a writer in another process
                flag_mutation_conflicts_total.labels(action=AuditAction.CREATE.value).inc()
                raise ConflictError(f"Feature flag with key '{key}' already exists", field="key") from e
            except ConflictError:
                flag_mutation_conflicts_total.labels(action=AuditAction.CREATE.value).inc()
                raise
            finally:
                db.close()

            self._coordinator.publish_flag(view)

        flag_mutations_total.labels(action=AuditAction.CREATE.value).inc()
        self.logger.info("feature_flag_created", flag_key=key, performed_by=actor.actor_id)
        return view

    def update(self, key: str, patch: FlagPatch, expected_version: int, actor: Actor) -> FlagView:
        """Apply a partial update if ``expected_version`` is still current.

        Raises:
            NotFoundError: absent or archived flag
            ConflictError: ``expected_version`` is stale
            InvalidArgumentError: constraint violation or attempt to change the key
        """
        if patch.key is not None and patch.key != key:
            raise InvalidArgumentError("Cannot change feature flag key", field="key")

        changes = {}
        if patch.name is not None:
            changes["name"] = validate_name(patch.name)
        if patch.description is not None:
            changes["description"] = validate_description(patch.description)
        if patch.enabled is not None:
            changes["enabled"] = bool(patch.enabled)
        if patch.rollout_percentage is not None:
            changes["rollout_percentage"] = validate_rollout(patch.rollout_percentage)
        if patch.target_user_ids is not None:
            changes["target_user_ids"] = normalize_user_ids(patch.target_user_ids, "target_user_ids")
        if patch.excluded_user_ids is not None:
            changes["excluded_user_ids"] = normalize_user_ids(patch.excluded_user_ids, "excluded_user_ids")

        return self._mutate(
            key,
            AuditAction.UPDATE,
            actor,
            apply=lambda flag: self._apply_changes(flag, changes),
            describe=lambda flag: f"Updated feature flag '{key}'",
            expected_version=expected_version,
        )

    def toggle(self, key: str, enabled: bool, actor: Actor) -> FlagView:
        """Set the master switch; recorded as TOGGLE, not UPDATE."""
        if not isinstance(enabled, bool):
            raise InvalidArgumentError("enabled must be a boolean", field="enabled")

        return self._mutate(
            key,
            AuditAction.TOGGLE,
            actor,
            apply=lambda flag: setattr(flag, "enabled", enabled),
            describe=lambda flag: f"Toggled feature flag '{key}' to {'enabled' if enabled else 'disabled'}",
        )

    def archive(self, key: str, actor: Actor) -> FlagView:
        """Soft-delete a flag. The row is kept for audit integrity."""
        return self._mutate(
            key,
            AuditAction.DELETE,
            actor,
            apply=lambda flag: setattr(flag, "archived", True),
            describe=lambda flag: f"Deleted feature flag '{key}'",
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_changes(flag: FeatureFlag, changes: dict) -> None:
        for field_name, value in changes.items():
            setattr(flag, field_name, value)

    def _mutate(
        self,
        key: str,
        action: AuditAction,
        actor: Actor,
        apply: Callable[[FeatureFlag], None],
        describe: Callable[[FeatureFlag], str],
        expected_version: Optional[int] = None,
    ) -> FlagView:
        with self._coordinator.key_lock(key):
            db = self._session_factory()
            try:
                with transaction(db):
                    flag = db.query(FeatureFlag).filter(FeatureFlag.key == key).first()
                    if flag is None or flag.archived:
                        raise NotFoundError(f"Feature flag '{key}' not found")
                    if expected_version is not None and flag.version != expected_version:
                        raise ConflictError(
                            f"Feature flag '{key}' was modified concurrently",
                            details={"expected_version": expected_version, "current_version": flag.version},
                            field="version",
                        )

                    before = FlagView.from_model(flag).to_dict()
                    apply(flag)
                    # Every committed mutation bumps the version, even if no column changed
                    flag.updated_at = utcnow()
                    db.flush()

                    view = FlagView.from_model(flag)
                    self._ledger.append(
                        db,
                        action,
                        key,
                        actor,
                        describe(flag),
                        old_value=before,
                        new_value=view.to_dict(),
                    )
            except StaleDataError as e:
                flag_mutation_conflicts_total.labels(action=action.value).inc()
                raise ConflictError(f"Feature flag '{key}' was modified concurrently", field="version") from e
            except ConflictError:
                flag_mutation_conflicts_total.labels(action=action.value).inc()
                raise
            finally:
                db.close()

            self._coordinator.publish_flag(view)

        flag_mutations_total.labels(action=action.value).inc()
        self.logger.info(
            "feature_flag_mutated",
            action=action.value,
            flag_key=key,
            version=view.version,
            performed_by=actor.actor_id,
        )
        return view
