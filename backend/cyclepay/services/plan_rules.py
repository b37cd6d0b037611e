"""Plan identity and ordering rules."""

from decimal import Decimal

from cyclepay.models.plan import Plan, PlanSlug

PLAN_RANKS: dict[str, int] = {
    PlanSlug.FREE.value: 0,
    PlanSlug.ESSENTIAL.value: 2,
    PlanSlug.PROFESSIONAL.value: 3,
}


def effective_plan_slug(plan: Plan) -> str:
    """Slug of the base plan a plan belongs to (sub-plans resolve to their parent)."""
    if plan.parent is not None:
        return str(plan.parent.slug)
    return str(plan.slug)


def plan_rank(plan: Plan | None) -> int:
    if plan is None:
        return 0
    return PLAN_RANKS.get(effective_plan_slug(plan), 0)


def supports_billing(plan: Plan) -> bool:
    """Whether drivers on this plan can bill passengers through the platform."""
    return effective_plan_slug(plan) in (PlanSlug.ESSENTIAL.value, PlanSlug.PROFESSIONAL.value)


def supports_auto_fill(plan: Plan) -> bool:
    """Whether passengers are enrolled in automatic billing up to the contracted quota."""
    return effective_plan_slug(plan) == PlanSlug.PROFESSIONAL.value


def is_upgrade(
    current_plan: Plan | None,
    current_price: Decimal,
    current_quota: int | None,
    new_plan: Plan,
    new_price: Decimal,
    new_quota: int | None,
) -> bool:
    """Classify a plan change.

    A higher-ranked plan is always an upgrade and a lower-ranked one never is.
    Within the same rank the price decides, and on equal price only a larger
    quota counts as an upgrade.
    """
    if current_plan is None:
        return True

    current_rank = plan_rank(current_plan)
    new_rank = plan_rank(new_plan)
    if new_rank != current_rank:
        return new_rank > current_rank

    diff = Decimal(new_price) - Decimal(current_price)
    if diff != 0:
        return diff > 0
    return (new_quota or 0) > (current_quota or 0)
