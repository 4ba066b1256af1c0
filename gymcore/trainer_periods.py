from __future__ import annotations

"""
Trainer access windows per plan tier.

Tiers:
- regular monthly: trainer only through an addon, for the whole membership duration
- basic: trainer only through an addon, one month
- premium: 7 free days, plus one month with an addon
- elite: 30 free days, plus one month with an addon

Every computed window is clamped so it never ends after the membership.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .periods import add_months, end_of_day


logger = logging.getLogger(__name__)

PREMIUM_FREE_DAYS = 7
ELITE_FREE_DAYS = 30
TRAINER_ADDON_MONTHS = 1
TRAINER_RENEWAL_MONTHS = 1


def plan_tier(plan_name: str) -> str:
    lowered = (plan_name or "").strip().lower()
    if "regular" in lowered:
        return "regular"
    if lowered in ("basic", "premium", "elite"):
        return lowered
    return "other"


def is_regular_plan(plan_name: str) -> bool:
    return plan_tier(plan_name) == "regular"


def includes_trainer(plan_name: str) -> bool:
    return plan_tier(plan_name) in ("premium", "elite")


@dataclass(frozen=True)
class TrainerPlanConfig:
    plan_name: str
    plan_mode: str = "online"
    has_trainer_addon: bool = False
    selected_trainer_id: Optional[str] = None
    duration_months: int = 1


@dataclass(frozen=True)
class TrainerPeriod:
    start: datetime
    end: datetime
    trainer_id: Optional[str]
    is_included: bool
    is_addon: bool
    clamped: bool = False

    @property
    def assignment_type(self) -> str:
        return "included" if self.is_included else "addon"


def _clamp(end: datetime, membership_end: Optional[datetime]) -> tuple[datetime, bool]:
    if membership_end is not None and end > membership_end:
        return membership_end, True
    return end, False


def compute_trainer_period(
    config: TrainerPlanConfig,
    membership_start: datetime,
    membership_end: Optional[datetime] = None,
) -> Optional[TrainerPeriod]:
    """Trainer window starting at ``membership_start``, or ``None`` when the plan grants none."""
    tier = plan_tier(config.plan_name)
    free_days = 0
    addon_months = 0

    if tier == "premium":
        free_days = PREMIUM_FREE_DAYS
    elif tier == "elite":
        free_days = ELITE_FREE_DAYS

    if config.has_trainer_addon:
        if tier in ("regular", "other"):
            # addon spans the membership itself, never a previous trainer end
            addon_months = config.duration_months if config.duration_months > 0 else 1
        else:
            addon_months = TRAINER_ADDON_MONTHS

    if not free_days and not addon_months:
        return None

    end = membership_start + timedelta(days=free_days)
    if addon_months:
        end = add_months(end, addon_months)
    end, clamped = _clamp(end, membership_end)
    if clamped:
        logger.info(
            "trainer_period_clamped plan=%s membership_end=%s", config.plan_name, membership_end.isoformat()
        )

    return TrainerPeriod(
        start=membership_start,
        end=end,
        trainer_id=config.selected_trainer_id,
        is_included=free_days > 0,
        is_addon=addon_months > 0,
        clamped=clamped,
    )


def compute_trainer_renewal_period(
    now: datetime,
    current_period_end: Optional[datetime],
    membership_end: Optional[datetime],
    trainer_id: Optional[str] = None,
    months: int = TRAINER_RENEWAL_MONTHS,
) -> TrainerPeriod:
    """One renewal month, starting where the current window ends if it is still running."""
    start = now
    if current_period_end is not None and current_period_end > now:
        start = current_period_end
    end, clamped = _clamp(add_months(start, months), membership_end)
    return TrainerPeriod(start=start, end=end, trainer_id=trainer_id, is_included=False, is_addon=True, clamped=clamped)


@dataclass(frozen=True)
class ChartResponsibility:
    should_upload: str
    reason: str
    can_trainer_upload: bool
    can_admin_upload: bool


def _trainer(reason: str) -> ChartResponsibility:
    return ChartResponsibility("trainer", reason, True, False)


def _admin(reason: str, can_upload: bool = True) -> ChartResponsibility:
    return ChartResponsibility("admin", reason, False, can_upload)


def resolve_chart_responsibility(
    plan_name: str,
    has_trainer_addon: bool,
    trainer_period_end: Optional[datetime],
    membership_start: datetime,
    now: datetime,
) -> ChartResponsibility:
    """Who uploads workout/diet charts today: ``trainer``, ``admin`` or ``none``."""
    tier = plan_tier(plan_name)
    trainer_running = trainer_period_end is not None and now <= trainer_period_end

    if tier == "regular":
        if not has_trainer_addon:
            return ChartResponsibility("none", "regular plan without trainer addon needs no charts", False, False)
        if trainer_running:
            return _trainer("regular plan with trainer addon")
        return _admin("regular plan trainer period ended", can_upload=False)

    if tier == "basic":
        if not has_trainer_addon:
            return _admin("basic plan without trainer")
        if trainer_running:
            return _trainer("basic plan with trainer addon")
        return _admin("basic plan trainer period ended, admin uploads until trainer renewal")

    if tier in ("premium", "elite"):
        free_days = PREMIUM_FREE_DAYS if tier == "premium" else ELITE_FREE_DAYS
        free_end = end_of_day(membership_start + timedelta(days=free_days))
        if not has_trainer_addon:
            if trainer_running and now <= free_end:
                return _trainer(f"{tier} plan free trainer period")
            return _admin(f"{tier} plan free trainer period ended or no trainer assigned")
        if trainer_running:
            return _trainer(f"{tier} plan with trainer addon")
        return _admin(f"{tier} plan trainer period ended, admin uploads until renewal")

    return _admin("unknown plan type")


def needs_workout_charts(plan_name: str, has_trainer_addon: bool) -> bool:
    if is_regular_plan(plan_name):
        return has_trainer_addon
    return True


def needs_diet_charts(plan_name: str, has_trainer_addon: bool = False) -> bool:
    tier = plan_tier(plan_name)
    if tier == "basic":
        return False
    if tier == "regular":
        return has_trainer_addon
    return True
