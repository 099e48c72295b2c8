"""Evaluation Engine.

Turns a flag's published configuration plus a user id into one boolean
decision. Rules are applied in a fixed order, first match wins:

    1. flag absent or archived          -> NotFoundError
    2. bucket computed (always reported)
    3. kill switch active               -> False  KILL_SWITCH
    4. user in excluded_user_ids        -> False  EXCLUDED
    5. user in target_user_ids          -> flag.enabled  TARGETED
    6. flag disabled                    -> False  DISABLED
    7. bucket < rollout_percentage      -> ROLLOUT_IN / ROLLOUT_OUT

Exclusion dominates targeting: a user on both lists is off. Targeting does not
bypass the master switch; a targeted user of a disabled flag is off.

Evaluation reads exactly one ``FlagSnapshot`` per call and never touches the
database or a writer lock.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Tuple

from flagengine.core.errors import NotFoundError
from flagengine.core.logging import get_logger
from flagengine.core.metrics import flag_evaluation_latency_seconds, flag_evaluations_total
from flagengine.services.coordinator import ConcurrencyCoordinator
from flagengine.services.hasher import bucket as compute_user_bucket
from flagengine.services.snapshot import FlagSnapshot

logger = get_logger(__name__)


class EvaluationReason(str, Enum):
    """Rule that decided an evaluation."""

    KILL_SWITCH = "KILL_SWITCH"
    EXCLUDED = "EXCLUDED"
    TARGETED = "TARGETED"
    DISABLED = "DISABLED"
    ROLLOUT_IN = "ROLLOUT_IN"
    ROLLOUT_OUT = "ROLLOUT_OUT"


@dataclass(frozen=True)
class EvaluationResult:
    flag_key: str
    user_id: str
    enabled: bool
    bucket: int
    reason: EvaluationReason
    snapshot_version: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "flag_key": self.flag_key,
            "user_id": self.user_id,
            "enabled": self.enabled,
            "bucket": self.bucket,
            "reason": self.reason.value,
            "snapshot_version": self.snapshot_version,
        }


@dataclass(frozen=True)
class BulkEvaluation:
    """Outcome of ``evaluate_many``: results plus the keys that were not found."""

    results: List[EvaluationResult] = field(default_factory=list)
    missing: List[Tuple[str, str]] = field(default_factory=list)
    snapshot_version: int = 0


class EvaluationEngine:
    """Applies the ordered evaluation rules to the published snapshot."""

    def __init__(self, coordinator: ConcurrencyCoordinator):
        self._coordinator = coordinator

    def evaluate(self, flag_key: str, user_id: str) -> EvaluationResult:
        """Decide whether ``flag_key`` is on for ``user_id``.

        Raises:
            NotFoundError: unknown or archived flag
        """
        return self._evaluate(self._coordinator.snapshot, flag_key, user_id)

    def evaluate_many(self, requests: Iterable[Tuple[str, str]]) -> BulkEvaluation:
        """Evaluate ``(flag_key, user_id)`` pairs against one snapshot.

        Unknown or archived keys are collected in ``missing`` instead of
        failing the whole batch.
        """
        snapshot = self._coordinator.snapshot
        results: List[EvaluationResult] = []
        missing: List[Tuple[str, str]] = []
        for flag_key, user_id in requests:
            try:
                results.append(self._evaluate(snapshot, flag_key, user_id))
            except NotFoundError:
                missing.append((flag_key, user_id))
        return BulkEvaluation(results=results, missing=missing, snapshot_version=snapshot.version)

    def _evaluate(self, snapshot: FlagSnapshot, flag_key: str, user_id: str) -> EvaluationResult:
        started = time.perf_counter()

        flag = snapshot.get_flag(flag_key)
        if flag is None or flag.archived:
            raise NotFoundError(f"Feature flag '{flag_key}' not found")

        user_bucket = compute_user_bucket(flag_key, user_id)

        if snapshot.kill_switch_active(flag_key):
            enabled, reason = False, EvaluationReason.KILL_SWITCH
        elif user_id in flag.excluded_user_ids:
            enabled, reason = False, EvaluationReason.EXCLUDED
        elif user_id in flag.target_user_ids:
            enabled, reason = flag.enabled, EvaluationReason.TARGETED
        elif not flag.enabled:
            enabled, reason = False, EvaluationReason.DISABLED
        elif user_bucket < flag.rollout_percentage:
            enabled, reason = True, EvaluationReason.ROLLOUT_IN
        else:
            enabled, reason = False, EvaluationReason.ROLLOUT_OUT

        flag_evaluations_total.labels(reason=reason.value).inc()
        flag_evaluation_latency_seconds.observe(time.perf_counter() - started)

        return EvaluationResult(
            flag_key=flag_key,
            user_id=user_id,
            enabled=enabled,
            bucket=user_bucket,
            reason=reason,
            snapshot_version=snapshot.version,
        )
