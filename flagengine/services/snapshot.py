"""Immutable read model used by flag evaluation.

``FlagSnapshot`` holds frozen views of every flag and kill switch, keyed by
flag key, behind read-only mappings. A snapshot is never modified after
construction: writers derive a new snapshot with ``with_flag`` /
``with_kill_switch`` and publish it with a single reference swap, so a reader
holding a snapshot always sees one consistent state of a flag (never the new
``rollout_percentage`` next to the old ``target_user_ids``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional

from flagengine.models.feature_flag import FeatureFlag, utcnow
from flagengine.models.kill_switch import KillSwitch


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class FlagView:
    """Detached, immutable copy of a feature flag row."""

    id: int
    key: str
    name: str
    description: Optional[str]
    enabled: bool
    rollout_percentage: int
    target_user_ids: FrozenSet[str]
    excluded_user_ids: FrozenSet[str]
    archived: bool
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, flag: FeatureFlag) -> "FlagView":
        return cls(
            id=flag.id,
            key=flag.key,
            name=flag.name,
            description=flag.description,
            enabled=bool(flag.enabled),
            rollout_percentage=int(flag.rollout_percentage),
            target_user_ids=frozenset(flag.target_user_ids or ()),
            excluded_user_ids=frozenset(flag.excluded_user_ids or ()),
            archived=bool(flag.archived),
            version=int(flag.version),
            created_at=flag.created_at,
            updated_at=flag.updated_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "rollout_percentage": self.rollout_percentage,
            "target_user_ids": sorted(self.target_user_ids),
            "excluded_user_ids": sorted(self.excluded_user_ids),
            "archived": self.archived,
            "version": self.version,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class KillSwitchView:
    """Detached, immutable copy of a kill switch row."""

    flag_key: str
    active: bool
    reason: Optional[str] = None
    activated_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, switch: KillSwitch) -> "KillSwitchView":
        return cls(
            flag_key=switch.flag_key,
            active=bool(switch.active),
            reason=switch.reason,
            activated_by=switch.activated_by,
            created_at=switch.created_at,
            updated_at=switch.updated_at,
        )

    @classmethod
    def inactive(cls, flag_key: str) -> "KillSwitchView":
        """Implicit state of a flag that never had a kill switch."""
        return cls(flag_key=flag_key, active=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flag_key": self.flag_key,
            "active": self.active,
            "reason": self.reason,
            "activated_by": self.activated_by,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


_EMPTY: Mapping = MappingProxyType({})


@dataclass(frozen=True)
class FlagSnapshot:
    """Versioned, immutable view of all flags and kill switches."""

    version: int = 0
    flags: Mapping[str, FlagView] = field(default_factory=lambda: _EMPTY)
    kill_switches: Mapping[str, KillSwitchView] = field(default_factory=lambda: _EMPTY)
    built_at: datetime = field(default_factory=utcnow)

    @classmethod
    def build(
        cls,
        version: int,
        flags: Iterable[FlagView],
        kill_switches: Iterable[KillSwitchView],
    ) -> "FlagSnapshot":
        return cls(
            version=version,
            flags=MappingProxyType({view.key: view for view in flags}),
            kill_switches=MappingProxyType({view.flag_key: view for view in kill_switches}),
        )

    def get_flag(self, key: str) -> Optional[FlagView]:
        return self.flags.get(key)

    def kill_switch_active(self, key: str) -> bool:
        switch = self.kill_switches.get(key)
        return switch is not None and switch.active

    def with_flag(self, view: FlagView, version: int) -> "FlagSnapshot":
        flags = dict(self.flags)
        flags[view.key] = view
        return FlagSnapshot(
            version=version,
            flags=MappingProxyType(flags),
            kill_switches=self.kill_switches,
        )

    def with_kill_switch(self, view: KillSwitchView, version: int) -> "FlagSnapshot":
        switches = dict(self.kill_switches)
        switches[view.flag_key] = view
        return FlagSnapshot(
            version=version,
            flags=self.flags,
            kill_switches=MappingProxyType(switches),
        )
