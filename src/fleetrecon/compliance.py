"""Compliance evaluator.

Translates resolved expiry dates into per-category status, urgency, an
aggregate compliance score and a risk level.  Everything here is pure and
deterministic given ``(fields, now)``; tests pin ``now`` instead of
patching clocks.

Scoring scale (kept exact for reporting):

* each scored category contributes 100 when ``current``, 70 when
  ``expiring_soon`` and 0 when ``expired`` or ``missing``
* the score is the mean, rounded half up
* >= 90 is compliant, >= 50 is a warning, anything below is non-compliant
"""

from __future__ import annotations

import dataclasses
import math
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime, time

from fleetrecon.config import ReconcilerConfig
from fleetrecon.enums import ComplianceBand, ComplianceCategory, ComplianceStatus, FieldName, RiskLevel, Urgency
from fleetrecon.models.vehicle import CategoryCompliance, FieldState, VehicleRecord, band_for_score
from fleetrecon.state.policy import CATEGORY_EXPIRY_FIELDS

SCORED_CATEGORIES: tuple[ComplianceCategory, ...] = (
    ComplianceCategory.REGISTRATION,
    ComplianceCategory.INSURANCE,
    ComplianceCategory.INSPECTION,
)

STATUS_POINTS: dict[ComplianceStatus, int] = {
    ComplianceStatus.CURRENT: 100,
    ComplianceStatus.EXPIRING_SOON: 70,
    ComplianceStatus.EXPIRED: 0,
    ComplianceStatus.MISSING: 0,
}

_SECONDS_PER_DAY = 86400


def days_until(expiry: date, now: datetime) -> int:
    """Whole days from *now* until *expiry* (00:00 UTC), rounded up."""
    expiry_at = datetime.combine(expiry, time.min, tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return math.ceil((expiry_at - now).total_seconds() / _SECONDS_PER_DAY)


def status_for_days(days: int | None, *, expiring_soon_days: int = 30) -> ComplianceStatus:
    if days is None:
        return ComplianceStatus.MISSING
    if days < 0:
        return ComplianceStatus.EXPIRED
    if days <= expiring_soon_days:
        return ComplianceStatus.EXPIRING_SOON
    return ComplianceStatus.CURRENT


def urgency_for_days(days: int | None, *, critical_days: int = 7, warning_days: int = 30) -> Urgency | None:
    if days is None:
        return None
    if days < 0:
        return Urgency.EXPIRED
    if days <= critical_days:
        return Urgency.CRITICAL
    if days <= warning_days:
        return Urgency.WARNING
    return Urgency.NORMAL


def score_for(statuses: Iterable[ComplianceStatus]) -> int:
    points = [STATUS_POINTS[status] for status in statuses]
    if not points:
        return 0
    return math.floor(sum(points) / len(points) + 0.5)


def risk_for(score: int, *, any_expired: bool, conflicts: int) -> RiskLevel:
    if any_expired or (conflicts > 0 and score < 50):
        return RiskLevel.CRITICAL
    if score < 70:
        return RiskLevel.HIGH
    if score < 90:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


@dataclasses.dataclass(frozen=True)
class Evaluation:
    categories: dict[ComplianceCategory, CategoryCompliance]
    score: int
    risk_level: RiskLevel

    @property
    def band(self) -> ComplianceBand:
        return band_for_score(self.score)


class ComplianceEvaluator:
    """Pure evaluator over resolved field states."""

    def __init__(self, config: ReconcilerConfig | None = None) -> None:
        self._config = config or ReconcilerConfig()

    def category(self, category: ComplianceCategory, expiry: date | None, now: datetime) -> CategoryCompliance:
        days = days_until(expiry, now) if expiry is not None else None
        return CategoryCompliance(
            category=category,
            status=status_for_days(days, expiring_soon_days=self._config.expiring_soon_days),
            expiration_date=expiry,
            days_until_expiry=days,
            urgency=urgency_for_days(
                days,
                critical_days=self._config.critical_days,
                warning_days=self._config.expiring_soon_days,
            ),
        )

    def evaluate_dates(
        self,
        expiries: Mapping[ComplianceCategory, date | None],
        now: datetime,
        *,
        conflicts: int = 0,
        scored: tuple[ComplianceCategory, ...] = SCORED_CATEGORIES,
    ) -> Evaluation:
        categories = {
            category: self.category(category, expiries.get(category), now) for category in ComplianceCategory
        }
        score = score_for(categories[category].status for category in scored)
        any_expired = any(item.status == ComplianceStatus.EXPIRED for item in categories.values())
        return Evaluation(
            categories=categories,
            score=score,
            risk_level=risk_for(score, any_expired=any_expired, conflicts=conflicts),
        )

    def evaluate(
        self,
        fields: Mapping[FieldName, FieldState],
        now: datetime,
        *,
        conflicts: int = 0,
        scored: tuple[ComplianceCategory, ...] = SCORED_CATEGORIES,
    ) -> Evaluation:
        """Evaluate resolved field states at *now*."""
        expiries: dict[ComplianceCategory, date | None] = {}
        for category, field in CATEGORY_EXPIRY_FIELDS.items():
            state = fields.get(field)
            value = state.current_value if state is not None else None
            expiries[category] = value if isinstance(value, date) else None
        return self.evaluate_dates(expiries, now, conflicts=conflicts, scored=scored)

    def evaluate_record(self, record: VehicleRecord, now: datetime) -> Evaluation:
        """Evaluate a persisted row from its own expiration dates.

        Used for vehicles the reconciler has never seen.
        """
        expiries = {
            ComplianceCategory.REGISTRATION: record.registration_expiration_date,
            ComplianceCategory.INSURANCE: record.insurance_expiration_date,
            ComplianceCategory.INSPECTION: record.inspection_expiration_date,
        }
        return self.evaluate_dates(expiries, now)
