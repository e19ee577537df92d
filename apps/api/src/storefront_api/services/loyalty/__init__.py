"""Loyalty service exports."""

from .audit import AuditFinding, LoyaltyAuditReport, LoyaltySnapshotAuditor, audit_snapshot  # noqa: F401
from .earning import LoyaltyEarningService  # noqa: F401
from .engine import LoyaltyAccountEngine, OperationOutcome, OperationResult  # noqa: F401
from .redemption import RedemptionOutcome, RedemptionResult, RedemptionService  # noqa: F401
from .snapshot_store import (  # noqa: F401
    InMemorySnapshotStore,
    SnapshotConflictError,
    SnapshotPersistenceError,
    SnapshotStore,
    SqlAlchemySnapshotStore,
    StoredSnapshot,
)
