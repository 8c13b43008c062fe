"""SQLAlchemy ORM models for the phrase SRS database."""

from backend.models.base import Base
from backend.models.card import Card
from backend.models.member import Member
from backend.models.member_settings import MemberSettings
from backend.models.phrase import Phrase
from backend.models.review_log import ReviewLog
from backend.models.struggle_event import StruggleEvent

__all__ = ["Base", "Card", "Member", "MemberSettings", "Phrase", "ReviewLog", "StruggleEvent"]
