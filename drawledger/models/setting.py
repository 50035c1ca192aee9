from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, String, Text, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from .base import Base


class AppSetting(Base):
    """Admin-editable key/value override for a configured default."""

    __tablename__ = "app_settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __init__(self, *, key: str, value: str) -> None:
        self.key = key
        self.value = value

    @classmethod
    def get_value(cls, session: Session, key: str) -> Optional[str]:
        return session.scalar(select(cls.value).where(cls.key == key))

    @classmethod
    def put(cls, session: Session, key: str, value: str) -> "AppSetting":
        """Insert or update ``key``."""

        setting = session.get(cls, key)
        if setting is None:
            setting = cls(key=key, value=value)
            session.add(setting)
        else:
            setting.value = value
        session.flush()
        return setting
