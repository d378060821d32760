from datetime import datetime
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin
from app.models.friendship import PAIR_KEY_LENGTH
from app.core.time import utcnow


class Chat(Base, TimestampMixin):
    """Conversation between two friends; id is the friendship pair key"""

    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(String(PAIR_KEY_LENGTH), primary_key=True)
    participants: Mapped[List[str]] = mapped_column(JSON, nullable=False)
    last_message_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Retention policy in days; None means messages never expire
    expiration_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
