"""
Patch rollout and migration orchestration: severity, cohort, registry,
notification dispatch, migration engine. Depends on store only through the
RegistryClient protocol. Do not add exports without updating __all__.
"""

from __future__ import annotations

from .cohort import bucket, cohort, in_cohort
from .migration import ArtifactTarget, MigrationEngine, PatchTarget
from .models import (
    Contract,
    MigrationOutcome,
    MigrationRecord,
    NotificationRecord,
    NotificationReport,
    Patch,
    PatchStatus,
)
from .notify import LogChannel, MemoryChannel, NotificationDispatcher, PatchNotice, WebhookChannel
from .registry import PatchRegistry
from .severity import Severity

# Do not add exports without updating __all__.
__all__ = [
    "ArtifactTarget",
    "Contract",
    "LogChannel",
    "MemoryChannel",
    "MigrationEngine",
    "MigrationOutcome",
    "MigrationRecord",
    "NotificationDispatcher",
    "NotificationRecord",
    "NotificationReport",
    "Patch",
    "PatchNotice",
    "PatchRegistry",
    "PatchStatus",
    "PatchTarget",
    "Severity",
    "WebhookChannel",
    "bucket",
    "cohort",
    "in_cohort",
]
