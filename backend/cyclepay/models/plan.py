from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import relationship

from cyclepay.core.database import Base
from cyclepay.models.shared import UUIDType, generate_uuid


class PlanSlug(str, Enum):
    FREE = "free"
    ESSENTIAL = "essential"
    PROFESSIONAL = "professional"


class Plan(Base):
    """A base plan (free/essential/professional) or a professional sub-plan tier.

    Sub-plans point at their base plan through ``parent_id`` and carry the
    passenger ``quota`` that the tier price buys.
    """

    __tablename__ = "plans"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    slug = Column(String(50), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=False)
    parent_id = Column(
        UUIDType,
        ForeignKey("plans.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    price = Column(Numeric(12, 2), nullable=False, default=0)
    promotional_price = Column(Numeric(12, 2), nullable=True)
    promotion_active = Column(Boolean, nullable=False, default=False)
    quota = Column(Integer, nullable=True)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    parent = relationship("Plan", remote_side=[id])
