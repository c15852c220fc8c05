"""
Domain models — Pydantic types for the migration pipeline.

All models are re-exported here for convenient access:

    from wsmigrate.core.models import Snapshot, TargetStateModel, ConvergenceAction
"""

from wsmigrate.core.models.action import ActionKind, ConvergenceAction, Receipt
from wsmigrate.core.models.capability import CapabilitySet
from wsmigrate.core.models.report import (
    ActionResult,
    CheckResult,
    CheckStatus,
    ManualStep,
    Outcome,
    ReconciliationReport,
    VerificationReport,
)
from wsmigrate.core.models.settings import Settings
from wsmigrate.core.models.snapshot import (
    CaptureRecord,
    CaptureUnit,
    FilePayload,
    Finding,
    Manifest,
    Snapshot,
    UnitStatus,
)
from wsmigrate.core.models.target import (
    DEFAULT_ROLE_DEPENDENCIES,
    UNIT_ROLE,
    Role,
    RoleSpec,
    TargetStateModel,
)

__all__ = [
    "DEFAULT_ROLE_DEPENDENCIES",
    "UNIT_ROLE",
    "ActionKind",
    "ActionResult",
    "CapabilitySet",
    "CaptureRecord",
    "CaptureUnit",
    "CheckResult",
    "CheckStatus",
    "ConvergenceAction",
    "FilePayload",
    "Finding",
    "ManualStep",
    "Manifest",
    "Outcome",
    "Receipt",
    "ReconciliationReport",
    "Role",
    "RoleSpec",
    "Settings",
    "Snapshot",
    "TargetStateModel",
    "UnitStatus",
    "VerificationReport",
]
