from __future__ import annotations

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

# Ensure project root on path
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gymcore.periods import add_months
from gymcore.trainer_periods import (
    TrainerPlanConfig,
    compute_trainer_period,
    compute_trainer_renewal_period,
    includes_trainer,
    needs_diet_charts,
    needs_workout_charts,
    plan_tier,
    resolve_chart_responsibility,
)


@pytest.mark.parametrize(
    "name,tier",
    [
        ("Regular Monthly", "regular"),
        ("regular", "regular"),
        ("Basic", "basic"),
        (" premium ", "premium"),
        ("ELITE", "elite"),
        ("Corporate", "other"),
        ("", "other"),
    ],
)
def test_plan_tier(name: str, tier: str) -> None:
    assert plan_tier(name) == tier


def test_elite_free_window_without_addon() -> None:
    start = datetime(2024, 1, 1)
    period = compute_trainer_period(TrainerPlanConfig("Elite", selected_trainer_id="t1"), start, add_months(start, 3))
    assert period is not None
    assert period.start == datetime(2024, 1, 1)
    assert period.end == datetime(2024, 1, 31)
    assert period.is_included and not period.is_addon
    assert period.assignment_type == "included"
    assert period.trainer_id == "t1"


def test_premium_with_addon_adds_a_month_after_free_days() -> None:
    start = datetime(2024, 1, 1)
    period = compute_trainer_period(
        TrainerPlanConfig("Premium", has_trainer_addon=True), start, add_months(start, 6)
    )
    assert period is not None
    assert period.end == datetime(2024, 2, 8)
    assert period.is_included and period.is_addon
    assert period.clamped is False


def test_regular_addon_spans_membership_duration() -> None:
    start = datetime(2024, 1, 15)
    period = compute_trainer_period(
        TrainerPlanConfig("Regular Monthly", has_trainer_addon=True, duration_months=3), start, add_months(start, 3)
    )
    assert period is not None
    assert period.end == datetime(2024, 4, 15)
    assert period.assignment_type == "addon"


def test_plans_without_trainer_access_get_no_period() -> None:
    start = datetime(2024, 1, 1)
    assert compute_trainer_period(TrainerPlanConfig("Basic"), start) is None
    assert compute_trainer_period(TrainerPlanConfig("Regular Monthly"), start) is None
    assert includes_trainer("Basic") is False
    assert includes_trainer("Elite") is True


def test_period_is_clamped_to_membership_end() -> None:
    start = datetime(2024, 1, 1)
    membership_end = add_months(start, 1)
    period = compute_trainer_period(TrainerPlanConfig("Premium", has_trainer_addon=True), start, membership_end)
    assert period is not None
    assert period.end == membership_end
    assert period.clamped is True


@pytest.mark.parametrize("plan", ["Basic", "Premium", "Elite", "Regular Monthly", "Corporate"])
@pytest.mark.parametrize("months", [1, 2, 12])
def test_period_never_outlives_membership(plan: str, months: int) -> None:
    start = datetime(2024, 1, 31)
    membership_end = add_months(start, months)
    period = compute_trainer_period(
        TrainerPlanConfig(plan, has_trainer_addon=True, duration_months=months), start, membership_end
    )
    assert period is not None
    assert period.end <= membership_end


def test_renewal_starts_after_running_period_and_is_clamped() -> None:
    now = datetime(2024, 1, 10)
    period = compute_trainer_renewal_period(now, datetime(2024, 2, 1), datetime(2024, 2, 15), trainer_id="t1")
    assert period.start == datetime(2024, 2, 1)
    assert period.end == datetime(2024, 2, 15)
    assert period.clamped is True
    assert period.is_addon and not period.is_included


def test_renewal_after_lapsed_period_starts_now() -> None:
    now = datetime(2024, 3, 10)
    period = compute_trainer_renewal_period(now, datetime(2024, 3, 1), datetime(2024, 9, 1), months=2)
    assert period.start == now
    assert period.end == datetime(2024, 5, 10)
    assert period.clamped is False


def test_elite_charts_move_to_admin_after_free_window() -> None:
    start = datetime(2024, 1, 1)
    period_end = start + timedelta(days=30)

    during = resolve_chart_responsibility("Elite", False, period_end, start, datetime(2024, 1, 20))
    assert during.should_upload == "trainer"
    assert during.can_trainer_upload and not during.can_admin_upload

    after = resolve_chart_responsibility("Elite", False, period_end, start, datetime(2024, 2, 1, 9, 0))
    assert after.should_upload == "admin"
    assert after.can_admin_upload


def test_chart_responsibility_by_tier() -> None:
    start = datetime(2024, 1, 1)
    now = datetime(2024, 1, 5)
    running = datetime(2024, 2, 1)

    assert resolve_chart_responsibility("Regular Monthly", False, None, start, now).should_upload == "none"
    assert resolve_chart_responsibility("Regular Monthly", True, running, start, now).should_upload == "trainer"
    lapsed = resolve_chart_responsibility("Regular Monthly", True, datetime(2024, 1, 2), start, now)
    assert lapsed.should_upload == "admin" and lapsed.can_admin_upload is False

    assert resolve_chart_responsibility("Basic", False, None, start, now).should_upload == "admin"
    assert resolve_chart_responsibility("Basic", True, running, start, now).should_upload == "trainer"
    assert resolve_chart_responsibility("Premium", True, running, start, datetime(2024, 1, 20)).should_upload == "trainer"
    assert resolve_chart_responsibility("Corporate", True, running, start, now).should_upload == "admin"


def test_chart_needs() -> None:
    assert needs_workout_charts("Regular Monthly", False) is False
    assert needs_workout_charts("Regular Monthly", True) is True
    assert needs_workout_charts("Basic", False) is True
    assert needs_diet_charts("Elite") is True
