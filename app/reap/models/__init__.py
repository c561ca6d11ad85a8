"""Data models for reap.

This module exports the core data structures used throughout the install
lifecycle.
"""

from reap.models.action import Action, ActionResult, ActionType
from reap.models.audit import AuditResult, DiffStatus, LintFinding, SignatureStatus, Verdict
from reap.models.plan import InstallPlan, PlanNode
from reap.models.record import BackendOrigin, Dependency, FetchedArtifact, PackageRecord
from reap.models.sandbox import (
    FileChange,
    NetworkEvent,
    RunStatus,
    SandboxKind,
    SandboxRun,
    SandboxStep,
)
from reap.models.snapshot import DbEntryImage, FileImage, Snapshot
from reap.models.transaction import AuditOverride, StageFailure, Transaction, TransactionState
from reap.models.unit import VettedUnit

__all__ = [
    "Action",
    "ActionResult",
    "ActionType",
    "AuditOverride",
    "AuditResult",
    "BackendOrigin",
    "DbEntryImage",
    "Dependency",
    "DiffStatus",
    "FetchedArtifact",
    "FileChange",
    "FileImage",
    "InstallPlan",
    "LintFinding",
    "NetworkEvent",
    "PackageRecord",
    "PlanNode",
    "RunStatus",
    "SandboxKind",
    "SandboxRun",
    "SandboxStep",
    "SignatureStatus",
    "Snapshot",
    "StageFailure",
    "Transaction",
    "TransactionState",
    "Verdict",
    "VettedUnit",
]
