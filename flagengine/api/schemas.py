"""Request and response models of the REST contract.

JSON uses camelCase (``rolloutPercentage``, ``targetUserIds``); snake_case
field names are accepted on input as well.
"""

from __future__ import annotations

from typing import List, Optional

from flagengine.services.audit_ledger import AuditEntryView
from flagengine.services.evaluation import EvaluationResult
from flagengine.services.snapshot import FlagView, KillSwitchView
from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# Flags


class FlagCreateRequest(CamelModel):
    """Request model for creating a feature flag."""

    key: str = Field(..., description="Unique flag key, lowercase words separated by hyphens")
    name: str = Field(..., description="Display name")
    description: Optional[str] = Field(default=None, description="Human-readable description")
    enabled: StrictBool = Field(default=False, description="Master switch")
    rollout_percentage: StrictInt = Field(default=0, description="Share of users in the rollout, 0-100")
    target_user_ids: List[str] = Field(default_factory=list, description="Users always evaluated by the master switch")
    excluded_user_ids: List[str] = Field(default_factory=list, description="Users always evaluated as off")


class FlagUpdateRequest(CamelModel):
    """Partial update; ``version`` must match the stored version."""

    version: StrictInt = Field(..., description="Version the client last read")
    key: Optional[str] = Field(default=None, description="Must equal the current key if supplied")
    name: Optional[str] = None
    description: Optional[str] = None
    enabled: Optional[StrictBool] = None
    rollout_percentage: Optional[StrictInt] = None
    target_user_ids: Optional[List[str]] = None
    excluded_user_ids: Optional[List[str]] = None


class ToggleRequest(CamelModel):
    enabled: StrictBool


class FlagResponse(CamelModel):
    id: int
    key: str
    name: str
    description: Optional[str] = None
    enabled: bool
    rollout_percentage: int
    target_user_ids: List[str]
    excluded_user_ids: List[str]
    archived: bool
    version: int
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_view(cls, view: FlagView) -> "FlagResponse":
        return cls(**view.to_dict())


# Evaluation


class EvaluationRequest(CamelModel):
    flag_key: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)


class BulkEvaluationRequest(CamelModel):
    evaluations: List[EvaluationRequest] = Field(..., description="Flag/user pairs evaluated against one snapshot")


class EvaluationResponse(CamelModel):
    flag_key: str
    user_id: str
    enabled: bool
    bucket: int
    reason: str
    snapshot_version: int

    @classmethod
    def from_result(cls, result: EvaluationResult) -> "EvaluationResponse":
        return cls(**result.to_dict())


class MissingFlag(CamelModel):
    flag_key: str
    user_id: str


class BulkEvaluationResponse(CamelModel):
    results: List[EvaluationResponse]
    missing: List[MissingFlag]
    snapshot_version: int


# Kill switches


class KillSwitchRequest(CamelModel):
    reason: str = Field(..., description="Why the flag is being forced off")


class KillSwitchResponse(CamelModel):
    flag_key: str
    active: bool
    reason: Optional[str] = None
    activated_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_view(cls, view: KillSwitchView) -> "KillSwitchResponse":
        return cls(**view.to_dict())


# Audit


class AuditEntryResponse(CamelModel):
    id: int
    action: str
    entity_type: str
    entity_key: str
    performed_by: str
    timestamp: Optional[str] = None
    description: Optional[str] = None
    ip_address: Optional[str] = None
    old_value: Optional[dict] = None
    new_value: Optional[dict] = None

    @classmethod
    def from_view(cls, view: AuditEntryView) -> "AuditEntryResponse":
        return cls(**view.to_dict())
