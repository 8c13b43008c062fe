from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.models.base import Base, TimestampMixin


class Member(Base, TimestampMixin):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")  # member, coach, admin

    cards: Mapped[list["Card"]] = relationship(back_populates="member")  # type: ignore[name-defined] # noqa: F821
    review_logs: Mapped[list["ReviewLog"]] = relationship(back_populates="member")  # type: ignore[name-defined] # noqa: F821
    phrase_settings: Mapped["MemberSettings"] = relationship(back_populates="member", uselist=False)  # type: ignore[name-defined] # noqa: F821
