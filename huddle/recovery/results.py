# =============================================================================
# File: huddle/recovery/results.py
# Description: Result objects shared by the recovery strategies and engine
# =============================================================================

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from huddle.common.enums.enums import Confidence

KIND_USER_MAPPING = "user_mapping"
KIND_RESPONSE = "response"
KIND_THREAD = "thread"
KIND_UNRESOLVED = "unresolved"
KIND_ERROR = "error"


@dataclass
class RecoveryDetail:
    """One record a strategy found (or failed on)."""
    strategy: str
    kind: str
    key: str
    confidence: Confidence
    inserted: bool = False
    persisted: bool = False
    dry_run: bool = False
    needs_review: bool = False
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "kind": self.kind,
            "key": self.key,
            "confidence": self.confidence.value,
            "inserted": self.inserted,
            "persisted": self.persisted,
            "dry_run": self.dry_run,
            "needs_review": self.needs_review,
            "message": self.message,
            "data": self.data,
        }


@dataclass
class StrategyResult:
    strategy: str
    dry_run: bool = False
    recovered: int = 0
    skipped: int = 0
    errors: int = 0
    unresolved: int = 0
    needs_review: int = 0
    details: List[RecoveryDetail] = field(default_factory=list)

    def record(
            self,
            kind: str,
            key: str,
            confidence: Confidence,
            inserted: bool,
            message: str = "",
            **data: Any,
    ) -> RecoveryDetail:
        """A record that was inserted (or would be in a dry run) or already present."""
        detail = RecoveryDetail(
            strategy=self.strategy,
            kind=kind,
            key=key,
            confidence=confidence,
            inserted=inserted,
            persisted=inserted and not self.dry_run,
            dry_run=self.dry_run,
            message=message or ("recovered" if inserted else "already present"),
            data=data,
        )
        if inserted:
            self.recovered += 1
        else:
            self.skipped += 1
        self.details.append(detail)
        return detail

    def review(self, kind: str, key: str, confidence: Confidence, message: str, **data: Any) -> RecoveryDetail:
        """A candidate surfaced for a human decision, not written."""
        detail = RecoveryDetail(
            strategy=self.strategy, kind=kind, key=key, confidence=confidence,
            dry_run=self.dry_run, needs_review=True, message=message, data=data,
        )
        self.needs_review += 1
        self.details.append(detail)
        return detail

    def unresolvable(self, key: str, message: str, **data: Any) -> RecoveryDetail:
        detail = RecoveryDetail(
            strategy=self.strategy, kind=KIND_UNRESOLVED, key=key, confidence=Confidence.LOW,
            dry_run=self.dry_run, message=message, data=data,
        )
        self.unresolved += 1
        self.details.append(detail)
        return detail

    def error(self, key: str, message: str, **data: Any) -> RecoveryDetail:
        detail = RecoveryDetail(
            strategy=self.strategy, kind=KIND_ERROR, key=key, confidence=Confidence.LOW,
            dry_run=self.dry_run, message=message, data=data,
        )
        self.errors += 1
        self.details.append(detail)
        return detail

    def recovered_of_kind(self, kind: str) -> int:
        return sum(1 for d in self.details if d.kind == kind and d.inserted)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategy": self.strategy,
            "dry_run": self.dry_run,
            "recovered": self.recovered,
            "skipped": self.skipped,
            "errors": self.errors,
            "unresolved": self.unresolved,
            "needs_review": self.needs_review,
        }


@dataclass
class RecoveryValidation:
    is_successful: bool
    success_rate: int
    recommendation: str
    recommendations: List[str] = field(default_factory=list)
    critical_issues: List[str] = field(default_factory=list)


@dataclass
class RecoveryReport:
    """Aggregate over every strategy that ran."""
    dry_run: bool
    lookback_days: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    by_strategy: Dict[str, StrategyResult] = field(default_factory=dict)
    skipped_reason: Optional[str] = None

    def add(self, result: StrategyResult) -> None:
        self.by_strategy[result.strategy] = result

    @property
    def recovered(self) -> int:
        return sum(r.recovered for r in self.by_strategy.values())

    @property
    def errors(self) -> int:
        return sum(r.errors for r in self.by_strategy.values())

    @property
    def needs_review(self) -> int:
        return sum(r.needs_review for r in self.by_strategy.values())

    @property
    def unresolved(self) -> int:
        return sum(r.unresolved for r in self.by_strategy.values())

    @property
    def details(self) -> List[RecoveryDetail]:
        return [d for r in self.by_strategy.values() for d in r.details]

    def recovered_of_kind(self, kind: str) -> int:
        return sum(r.recovered_of_kind(kind) for r in self.by_strategy.values())

    def validate(self, success_threshold: float = 0.8) -> RecoveryValidation:
        """Success rate plus what an operator should do next."""
        total = self.recovered + self.errors
        success_rate = 100 if self.errors == 0 else round(self.recovered / total * 100)

        recommendations: List[str] = []
        critical: List[str] = []
        is_successful = True

        if self.recovered_of_kind(KIND_USER_MAPPING) == 0 and self.errors > 0:
            critical.append("No user mappings recovered - users will need to link their accounts again")
            recommendations.append("Ask users to run the link command to re-establish their mappings")
            is_successful = False

        if self.recovered_of_kind(KIND_RESPONSE) == 0 and self.errors > 0:
            recommendations.append("RSVP history lost - upcoming matches will start with a clean RSVP state")

        if self.needs_review:
            recommendations.append(
                f"Review {self.needs_review} cross-reference candidate(s) before linking them"
            )

        if self.unresolved:
            recommendations.append(f"{self.unresolved} record(s) could not be tied to a user and were skipped")

        if success_rate > success_threshold * 100:
            recommendation = "Recovery successful"
        elif success_rate > 50:
            recommendation = "Partial recovery - manual intervention recommended"
        else:
            recommendation = "Recovery failed - manual setup required"
            is_successful = False

        return RecoveryValidation(
            is_successful=is_successful,
            success_rate=success_rate,
            recommendation=recommendation,
            recommendations=recommendations,
            critical_issues=critical,
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "lookback_days": self.lookback_days,
            "recovered": self.recovered,
            "errors": self.errors,
            "needs_review": self.needs_review,
            "unresolved": self.unresolved,
            "strategies": len(self.by_strategy),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.summary(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped_reason": self.skipped_reason,
            "by_strategy": {name: r.to_dict() for name, r in self.by_strategy.items()},
            "details": [d.to_dict() for d in self.details],
        }
