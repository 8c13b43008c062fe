from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.config import utcnow
from backend.models.base import Base


class ReviewLog(Base):
    """One row per rating event. Rows are never updated after insertion."""

    __tablename__ = "review_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    card_id: Mapped[int] = mapped_column(ForeignKey("cards.id"), nullable=False, index=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False, index=True)
    phrase_id: Mapped[int] = mapped_column(ForeignKey("phrases.id"), nullable=False)
    mode: Mapped[str] = mapped_column(String(20), nullable=False, default="recall")
    rating: Mapped[str] = mapped_column(String(10), nullable=False)  # again, hard, good, easy
    rated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    response_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    state_before: Mapped[str] = mapped_column(String(20), nullable=False)
    state_after: Mapped[str] = mapped_column(String(20), nullable=False)
    due_before: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    due_after: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    interval_before_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interval_after_ms: Mapped[int] = mapped_column(Integer, nullable=False)
    stability_before: Mapped[float] = mapped_column(Float, nullable=False)
    stability_after: Mapped[float] = mapped_column(Float, nullable=False)
    difficulty_before: Mapped[float] = mapped_column(Float, nullable=False)
    difficulty_after: Mapped[float] = mapped_column(Float, nullable=False)
    elapsed_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    was_overdue: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    overdue_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    config_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    card: Mapped["Card"] = relationship(back_populates="review_logs")  # type: ignore[name-defined] # noqa: F821
    member: Mapped["Member"] = relationship(back_populates="review_logs")  # type: ignore[name-defined] # noqa: F821
