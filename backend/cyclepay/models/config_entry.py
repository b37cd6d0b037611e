from sqlalchemy import Column, DateTime, String, func

from cyclepay.core.database import Base
from cyclepay.models.shared import UUIDType, generate_uuid


class ConfigEntry(Base):
    __tablename__ = "config_entries"

    id = Column(UUIDType, primary_key=True, default=generate_uuid)
    key = Column(String(100), unique=True, index=True, nullable=False)
    value = Column(String(255), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
