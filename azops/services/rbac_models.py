"""
Data models for RBAC reconciliation.

Role assignments are compared as exact five-field records. The file and the
live subscription are both reduced to these records; nothing else about an
assignment takes part in the comparison.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple


class ReconciliationMode(str, Enum):
    COMPARE = "compare"
    IMPORT = "import"
    EXPORT = "export"


@dataclass(frozen=True)
class RoleAssignment:
    """
    One role assignment as declared in the configuration file.

    Identity is the tuple of all five fields; equality is case-sensitive and
    no field is normalised.
    """

    display_name: str
    object_id: str
    role_definition_id: str
    role_definition_name: str
    scope: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleAssignment":
        return cls(
            display_name=data["displayName"],
            object_id=data["objectId"],
            role_definition_id=data["roleDefinitionId"],
            role_definition_name=data["roleDefinitionName"],
            scope=data["scope"],
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "displayName": self.display_name,
            "objectId": self.object_id,
            "roleDefinitionId": self.role_definition_id,
            "roleDefinitionName": self.role_definition_name,
            "scope": self.scope,
        }

    def sort_key(self) -> Tuple[str, str, str, str, str]:
        return (
            self.scope,
            self.role_definition_name,
            self.display_name,
            self.object_id,
            self.role_definition_id,
        )

    def __str__(self) -> str:
        return f"{self.display_name} ({self.object_id}) -> {self.role_definition_name} @ {self.scope}"


@dataclass
class RbacComparison:
    """Set comparison of configured and live role assignments."""

    config_only: List[RoleAssignment] = field(default_factory=list)
    live_only: List[RoleAssignment] = field(default_factory=list)
    in_both: List[RoleAssignment] = field(default_factory=list)

    @classmethod
    def compute(
        cls, configured: Sequence[RoleAssignment], live: Iterable[RoleAssignment]
    ) -> "RbacComparison":
        """Compare the two sets.

        ``config_only`` and ``in_both`` keep the file's order; ``live_only`` is
        sorted by scope, role and display name.
        """
        live_set = set(live)
        config_set = set(configured)
        ordered_config = list(dict.fromkeys(configured))
        return cls(
            config_only=[a for a in ordered_config if a not in live_set],
            in_both=[a for a in ordered_config if a in live_set],
            live_only=sorted(
                (a for a in live_set if a not in config_set), key=RoleAssignment.sort_key
            ),
        )

    @property
    def in_sync(self) -> bool:
        return not self.config_only and not self.live_only

    def exported(self) -> List[RoleAssignment]:
        """Records an export writes back: ``in_both`` followed by ``live_only``."""
        return self.in_both + self.live_only

    def to_dict(self) -> Dict[str, Any]:
        return {
            "counts": {
                "config_only": len(self.config_only),
                "live_only": len(self.live_only),
                "in_both": len(self.in_both),
            },
            "config_only": [a.to_dict() for a in self.config_only],
            "live_only": [a.to_dict() for a in self.live_only],
            "in_both": [a.to_dict() for a in self.in_both],
        }


class ImportOutcomeStatus(str, Enum):
    CREATED = "created"
    CONFLICT = "conflict"
    FAILED = "failed"


@dataclass
class ImportOutcome:
    assignment: RoleAssignment
    status: ImportOutcomeStatus
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "assignment": self.assignment.to_dict(),
            "status": self.status.value,
        }
        if self.reason:
            result["reason"] = self.reason
        return result


@dataclass
class RbacReconciliationResult:
    """Outcome of one reconciliation run, whatever the mode."""

    mode: ReconciliationMode
    subscription_id: str
    comparison: RbacComparison
    import_outcomes: List[ImportOutcome] = field(default_factory=list)
    exported_count: Optional[int] = None
    excluded_count: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None

    def count(self, status: ImportOutcomeStatus) -> int:
        return sum(1 for o in self.import_outcomes if o.status == status)

    @property
    def has_failures(self) -> bool:
        return self.count(ImportOutcomeStatus.FAILED) > 0

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "mode": self.mode.value,
            "subscription_id": self.subscription_id,
            "excluded_count": self.excluded_count,
            "comparison": self.comparison.to_dict(),
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
        if self.mode == ReconciliationMode.IMPORT:
            result["import"] = {
                "counts": {s.value: self.count(s) for s in ImportOutcomeStatus},
                "outcomes": [o.to_dict() for o in self.import_outcomes],
            }
        if self.exported_count is not None:
            result["exported_count"] = self.exported_count
        return result
