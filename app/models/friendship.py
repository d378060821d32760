from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin
from app.core.time import utcnow

# "<userA>_<userB>" with userA < userB
PAIR_KEY_LENGTH = 160


class Friendship(Base, TimestampMixin):
    """Canonical relationship record, one row per unordered user pair"""

    __tablename__ = "friendships"

    id: Mapped[str] = mapped_column(String(PAIR_KEY_LENGTH), primary_key=True)

    user_a_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_b_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # status: 'pending' | 'accepted' | 'blocked'
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    initiator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    blocked_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("user_a_id < user_b_id", name="chk_friendships_sorted_pair"),
        Index("idx_friendships_user_a", "user_a_id", "status"),
        Index("idx_friendships_user_b", "user_b_id", "status"),
    )
    __mapper_args__ = {"version_id_col": version}


class UserFriendship(Base, TimestampMixin):
    """Per-user mirror of a friendship, keyed by (owner, other user)"""

    __tablename__ = "user_friendships"

    owner_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    other_user_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    friendship_id: Mapped[str] = mapped_column(String(PAIR_KEY_LENGTH), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    # role: 'initiator' | 'recipient' | 'blocker' | 'blocked'
    role: Mapped[str] = mapped_column(String(16), nullable=False)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        Index("idx_user_friendships_owner_status", "owner_id", "status"),
        Index("idx_user_friendships_other", "other_user_id"),
    )
    __mapper_args__ = {"version_id_col": version}


class FriendshipEvent(Base):
    """Append-only audit trail of completed terminal transitions"""

    __tablename__ = "friendship_events"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    friendship_id: Mapped[str] = mapped_column(String(PAIR_KEY_LENGTH), nullable=False)
    # action: 'unfriend' | 'unblock'
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    initiator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_friendship_events_pair", "friendship_id", "timestamp"),
    )
