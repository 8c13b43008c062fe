from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.config import utcnow
from backend.models.base import Base


class StruggleEvent(Base):
    __tablename__ = "struggle_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False, index=True)
    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id"), nullable=False, index=True)
    phrase_id: Mapped[int] = mapped_column(ForeignKey("phrases.id"), nullable=False)
    trigger: Mapped[str] = mapped_column(String(50), nullable=False)  # e.g. consecutive_5, again_5_in_24h
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    resolved_by: Mapped[int | None] = mapped_column(ForeignKey("members.id"), nullable=True)

    card: Mapped["Card"] = relationship(back_populates="struggle_events")  # type: ignore[name-defined] # noqa: F821

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None
