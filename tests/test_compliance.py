from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from fleetrecon.compliance import (
    ComplianceEvaluator,
    days_until,
    risk_for,
    score_for,
    status_for_days,
    urgency_for_days,
)
from fleetrecon.config import ReconcilerConfig
from fleetrecon.enums import (
    ComplianceBand,
    ComplianceCategory,
    ComplianceStatus,
    RiskLevel,
    Urgency,
)
from fleetrecon.models.vehicle import VehicleRecord

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)
TODAY = NOW.date()


def test_days_until_rounds_up_from_midnight_utc() -> None:
    assert days_until(TODAY + timedelta(days=5), NOW) == 5
    assert days_until(TODAY + timedelta(days=1), NOW) == 1
    assert days_until(TODAY, NOW) == 0
    assert days_until(TODAY - timedelta(days=1), NOW) == -1


@pytest.mark.parametrize(
    ("days", "status"),
    [
        (None, ComplianceStatus.MISSING),
        (-1, ComplianceStatus.EXPIRED),
        (0, ComplianceStatus.EXPIRING_SOON),
        (30, ComplianceStatus.EXPIRING_SOON),
        (31, ComplianceStatus.CURRENT),
    ],
)
def test_status_boundaries(days: int | None, status: ComplianceStatus) -> None:
    assert status_for_days(days) == status


@pytest.mark.parametrize(
    ("days", "urgency"),
    [
        (None, None),
        (-3, Urgency.EXPIRED),
        (7, Urgency.CRITICAL),
        (8, Urgency.WARNING),
        (30, Urgency.WARNING),
        (31, Urgency.NORMAL),
    ],
)
def test_urgency_boundaries(days: int | None, urgency: Urgency | None) -> None:
    assert urgency_for_days(days) == urgency


def test_score_rounds_half_up() -> None:
    current, soon, missing = ComplianceStatus.CURRENT, ComplianceStatus.EXPIRING_SOON, ComplianceStatus.MISSING
    assert score_for([current, current, current]) == 100
    assert score_for([current, soon, missing]) == 57
    assert score_for([soon, soon, current]) == 80
    assert score_for([]) == 0


def test_risk_levels() -> None:
    assert risk_for(100, any_expired=True, conflicts=0) == RiskLevel.CRITICAL
    assert risk_for(40, any_expired=False, conflicts=1) == RiskLevel.CRITICAL
    assert risk_for(40, any_expired=False, conflicts=0) == RiskLevel.HIGH
    assert risk_for(57, any_expired=False, conflicts=0) == RiskLevel.HIGH
    assert risk_for(80, any_expired=False, conflicts=2) == RiskLevel.MEDIUM
    assert risk_for(90, any_expired=False, conflicts=0) == RiskLevel.LOW


def test_evaluate_dates_expiring_in_five_days() -> None:
    evaluation = ComplianceEvaluator().evaluate_dates(
        {
            ComplianceCategory.REGISTRATION: TODAY + timedelta(days=5),
            ComplianceCategory.INSURANCE: TODAY + timedelta(days=200),
        },
        NOW,
    )

    registration = evaluation.categories[ComplianceCategory.REGISTRATION]
    assert registration.days_until_expiry == 5
    assert registration.status == ComplianceStatus.EXPIRING_SOON
    assert registration.urgency == Urgency.CRITICAL
    assert evaluation.categories[ComplianceCategory.INSPECTION].status == ComplianceStatus.MISSING
    # 70 + 100 + 0 -> 56.67 -> 57
    assert evaluation.score == 57
    assert evaluation.band == ComplianceBand.WARNING
    assert evaluation.risk_level == RiskLevel.HIGH
    # Licence and medical are reported but not scored.
    assert set(evaluation.categories) == set(ComplianceCategory)


def test_unscored_expired_category_still_drives_risk() -> None:
    evaluation = ComplianceEvaluator().evaluate_dates(
        {
            ComplianceCategory.REGISTRATION: date(2027, 1, 1),
            ComplianceCategory.INSURANCE: date(2027, 1, 1),
            ComplianceCategory.INSPECTION: date(2027, 1, 1),
            ComplianceCategory.MEDICAL: date(2025, 1, 1),
        },
        NOW,
    )
    assert evaluation.score == 100
    assert evaluation.risk_level == RiskLevel.CRITICAL


def test_thresholds_follow_config() -> None:
    evaluator = ComplianceEvaluator(ReconcilerConfig(expiring_soon_days=60, critical_days=14))
    item = evaluator.category(ComplianceCategory.INSURANCE, TODAY + timedelta(days=45), NOW)
    assert item.status == ComplianceStatus.EXPIRING_SOON
    assert item.urgency == Urgency.WARNING


def test_evaluate_record_uses_row_dates() -> None:
    record = VehicleRecord(
        id="row-1",
        vin="1HGCM82633A004352",
        registration_expiration_date="2024-12-31",
        insurance_expiration_date="2026-06-01",
    )
    evaluation = ComplianceEvaluator().evaluate_record(record, NOW)
    assert evaluation.categories[ComplianceCategory.REGISTRATION].status == ComplianceStatus.EXPIRED
    assert evaluation.score == 33
    assert evaluation.risk_level == RiskLevel.CRITICAL
