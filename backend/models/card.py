"""SRS card model linking members to phrases."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.config import utcnow
from backend.models.base import Base, TimestampMixin


class Card(Base, TimestampMixin):
    """A member's scheduling state for one phrase.

    ``version`` is bumped on every flush; SQLAlchemy rejects an UPDATE whose
    version no longer matches the row, which is how two devices rating the
    same card at once are detected.
    """

    __tablename__ = "cards"
    __table_args__ = (UniqueConstraint("member_id", "phrase_id", name="uq_card_member_phrase"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), nullable=False, index=True)
    phrase_id: Mapped[int] = mapped_column(ForeignKey("phrases.id"), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="active"
    )  # active, buried, suspended, removed
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Scheduler state
    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default="new"
    )  # new, learning, review, relearning
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    due_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
    last_reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    stability: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    difficulty: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    interval_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    short_term_step_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    repetitions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lapses: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Struggle tracking
    assist_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0-4
    consecutive_again: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    again_count_24h: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    again_count_7d: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paused_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    paused_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    flag_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    member: Mapped["Member"] = relationship(back_populates="cards")  # type: ignore[name-defined] # noqa: F821
    phrase: Mapped["Phrase"] = relationship(back_populates="cards")  # type: ignore[name-defined] # noqa: F821
    review_logs: Mapped[list["ReviewLog"]] = relationship(back_populates="card")  # type: ignore[name-defined] # noqa: F821
    struggle_events: Mapped[list["StruggleEvent"]] = relationship(back_populates="card")  # type: ignore[name-defined] # noqa: F821

    __mapper_args__ = {"version_id_col": version}
