from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin


class MemberSettings(Base, TimestampMixin):
    """Stored per-member scheduling preferences.

    Values are validated by ``backend.srs.settings.ReviewSettings`` on read,
    so a hand-edited or half-migrated row degrades to defaults instead of
    blocking reviews.
    """

    __tablename__ = "member_settings"

    member_id: Mapped[int] = mapped_column(ForeignKey("members.id"), primary_key=True)
    target_retention: Mapped[float] = mapped_column(Float, nullable=False, default=0.9)
    new_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    reviews_per_day: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    learning_steps: Mapped[list] = mapped_column(JSON, nullable=False, default=lambda: ["1m", "10m"])
    relearning_steps: Mapped[list] = mapped_column(JSON, nullable=False, default=lambda: ["10m"])
    enable_fuzz: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    member: Mapped["Member"] = relationship(back_populates="phrase_settings")  # type: ignore[name-defined] # noqa: F821

    def as_dict(self) -> dict:
        return {
            "target_retention": self.target_retention,
            "new_per_day": self.new_per_day,
            "reviews_per_day": self.reviews_per_day,
            "learning_steps": self.learning_steps,
            "relearning_steps": self.relearning_steps,
            "enable_fuzz": self.enable_fuzz,
            "timezone": self.timezone,
        }
