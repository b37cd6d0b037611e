"""Plan repository for data access."""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from cyclepay.models.plan import Plan


class PlanRepository:
    """Repository for Plan model."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, plan_id: UUID) -> Plan | None:
        return self.db.query(Plan).filter(Plan.id == plan_id).first()

    def get_sub_plans(self, parent_id: UUID) -> list[Plan]:
        """Active tiers of a base plan, largest quota first."""
        return (
            self.db.query(Plan)
            .filter(Plan.parent_id == parent_id, Plan.active.is_(True))
            .order_by(Plan.quota.desc())
            .all()
        )

    def create(
        self,
        slug: str,
        name: str,
        price: Decimal,
        parent_id: UUID | None = None,
        quota: int | None = None,
        promotional_price: Decimal | None = None,
        promotion_active: bool = False,
    ) -> Plan:
        plan = Plan(
            slug=slug,
            name=name,
            price=price,
            parent_id=parent_id,
            quota=quota,
            promotional_price=promotional_price,
            promotion_active=promotion_active,
        )
        self.db.add(plan)
        self.db.commit()
        self.db.refresh(plan)
        return plan
