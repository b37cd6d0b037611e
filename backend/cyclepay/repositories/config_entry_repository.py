"""Config entry repository for data access."""

from sqlalchemy.orm import Session

from cyclepay.models.config_entry import ConfigEntry


class ConfigEntryRepository:
    """Repository for ConfigEntry model."""

    def __init__(self, db: Session):
        self.db = db

    def get_value(self, key: str) -> str | None:
        entry = self.db.query(ConfigEntry).filter(ConfigEntry.key == key).first()
        return str(entry.value) if entry else None

    def set_value(self, key: str, value: str) -> ConfigEntry:
        entry = self.db.query(ConfigEntry).filter(ConfigEntry.key == key).first()
        if entry:
            entry.value = value  # type: ignore[assignment]
        else:
            entry = ConfigEntry(key=key, value=value)
            self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        return entry
