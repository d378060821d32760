from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.friendship import PAIR_KEY_LENGTH
from app.core.time import utcnow


class ChatMessage(Base):
    """User-created content item (video message) inside a chat"""

    __tablename__ = "chat_messages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # No foreign key: messages outlive a deleted chat row
    chat_id: Mapped[str] = mapped_column(String(PAIR_KEY_LENGTH), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)

    media_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False), nullable=True)
    # archived_reason: 'unfriended' | 'blocked' | 'manual'
    archived_reason: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    original_chat_id: Mapped[Optional[str]] = mapped_column(String(PAIR_KEY_LENGTH), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_chat_messages_chat_sender", "chat_id", "sender_id", "is_archived"),
        Index("idx_chat_messages_chat_created", "chat_id", "created_at"),
    )
