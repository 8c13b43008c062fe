import json

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin


class Phrase(Base, TimestampMixin):
    __tablename__ = "phrases"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    mode: Mapped[str] = mapped_column(String(20), nullable=False, default="recall")  # recall, recognition
    prompt: Mapped[str] = mapped_column(Text, nullable=False)  # English prompt or transcript
    canonical_answer: Mapped[str | None] = mapped_column(Text, nullable=True)
    answers: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON array of accepted variants
    translation: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    tags: Mapped[str | None] = mapped_column(Text, nullable=True)  # JSON array of tags
    difficulty: Mapped[int] = mapped_column(Integer, nullable=False, default=3)  # 1-5 content rating

    cards: Mapped[list["Card"]] = relationship(back_populates="phrase")  # type: ignore[name-defined] # noqa: F821

    @property
    def tag_list(self) -> list[str]:
        """Return the decoded tag list, empty when unset or malformed."""
        if not self.tags:
            return []
        try:
            tags = json.loads(self.tags)
        except json.JSONDecodeError:
            return []
        return [str(t) for t in tags] if isinstance(tags, list) else []
