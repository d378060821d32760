"""
Friendship repository

Typed access to the friendship, mirror, chat and event tables over one
session. Every record a transition may write is read first and cached here;
``apply`` then works only from that cache. Once the first write is issued any
further read raises, which keeps the store's read-all-then-write-all contract
honest.
"""

import uuid
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InternalError
from app.core.time import utcnow
from app.friendship.state_machine import (
    ConversationView,
    DeactivateConversation,
    DeleteConversation,
    DeleteMirror,
    DeleteRelationship,
    MirrorRole,
    MirrorView,
    Pair,
    PutConversation,
    PutMirror,
    PutRelationship,
    RecordEvent,
    RelationshipStatus,
    RelationshipView,
    Snapshot,
    Write,
)
from app.models.chat import Chat
from app.models.friendship import Friendship, FriendshipEvent, UserFriendship
from app.models.user import User


def relationship_view(row: Friendship) -> RelationshipView:
    return RelationshipView(
        pair=Pair.of(row.user_a_id, row.user_b_id),
        status=RelationshipStatus(row.status),
        initiator_id=row.initiator_id,
        blocked_by=row.blocked_by,
    )


def mirror_view(row: UserFriendship) -> MirrorView:
    return MirrorView(
        owner_id=row.owner_id,
        other_user_id=row.other_user_id,
        relationship_key=row.friendship_id,
        status=RelationshipStatus(row.status),
        role=MirrorRole(row.role),
    )


def conversation_view(row: Chat) -> ConversationView:
    return ConversationView(key=row.id, participants=tuple(row.participants or ()), is_active=row.is_active)


def normalize_email(value: str) -> str:
    return value.strip().lower()


class RelationshipRepository:
    """Reads and writes the four record kinds of one user pair"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._relationships: Dict[str, Optional[Friendship]] = {}
        self._mirrors: Dict[Tuple[str, str], Optional[UserFriendship]] = {}
        self._chats: Dict[str, Optional[Chat]] = {}
        self._writing = False

    def _check_read(self) -> None:
        if self._writing:
            raise RuntimeError("All reads must happen before the first write of a transaction")

    # ============ Reads ============

    async def get_user(self, user_id: str) -> Optional[User]:
        self._check_read()
        return await self.session.get(User, user_id)

    async def resolve_user(self, email_or_id: str) -> Optional[User]:
        """Look a user up by email when the value looks like one, else by id"""
        self._check_read()
        value = (email_or_id or "").strip()
        if not value:
            return None
        if "@" in value:
            result = await self.session.execute(
                select(User).where(User.email == normalize_email(value)).limit(1)
            )
            return result.scalar_one_or_none()
        return await self.session.get(User, value)

    async def get_relationship(self, key: str) -> Optional[RelationshipView]:
        self._check_read()
        if key not in self._relationships:
            self._relationships[key] = await self.session.get(Friendship, key)
        row = self._relationships[key]
        return relationship_view(row) if row is not None else None

    async def get_mirror(self, owner_id: str, other_user_id: str) -> Optional[MirrorView]:
        self._check_read()
        mirror_key = (owner_id, other_user_id)
        if mirror_key not in self._mirrors:
            self._mirrors[mirror_key] = await self.session.get(UserFriendship, mirror_key)
        row = self._mirrors[mirror_key]
        return mirror_view(row) if row is not None else None

    async def get_conversation(self, key: str) -> Optional[ConversationView]:
        self._check_read()
        if key not in self._chats:
            self._chats[key] = await self.session.get(Chat, key)
        row = self._chats[key]
        return conversation_view(row) if row is not None else None

    async def load_snapshot(self, pair: Pair) -> Snapshot:
        """Read the friendship, both mirrors and the chat of ``pair``"""
        relationship = await self.get_relationship(pair.key)
        if relationship is not None and relationship.pair != pair:
            raise InternalError(
                "Friendship record belongs to another pair",
                details={"relationship_key": pair.key},
            )
        mirrors = {
            pair.user_a: await self.get_mirror(pair.user_a, pair.user_b),
            pair.user_b: await self.get_mirror(pair.user_b, pair.user_a),
        }
        conversation = await self.get_conversation(pair.key)
        return Snapshot(pair=pair, relationship=relationship, mirrors=mirrors, conversation=conversation)

    async def list_mirrors(self, owner_id: str, status: Optional[RelationshipStatus] = None) -> List[MirrorView]:
        self._check_read()
        stmt = select(UserFriendship).where(UserFriendship.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(UserFriendship.status == status.value)
        stmt = stmt.order_by(UserFriendship.updated_at.desc(), UserFriendship.other_user_id)
        result = await self.session.execute(stmt)
        return [mirror_view(row) for row in result.scalars().all()]

    async def counterparts(self, user_id: str) -> Set[str]:
        """Every user that shares a friendship or a mirror record with ``user_id``"""
        self._check_read()
        found: Set[str] = set()

        rows = await self.session.execute(
            select(Friendship.user_a_id, Friendship.user_b_id).where(
                or_(Friendship.user_a_id == user_id, Friendship.user_b_id == user_id)
            )
        )
        for user_a, user_b in rows.all():
            found.update((user_a, user_b))

        owned = await self.session.execute(
            select(UserFriendship.other_user_id).where(UserFriendship.owner_id == user_id)
        )
        found.update(owned.scalars().all())

        pointing = await self.session.execute(
            select(UserFriendship.owner_id).where(UserFriendship.other_user_id == user_id)
        )
        found.update(pointing.scalars().all())

        found.discard(user_id)
        return found

    # ============ Writes ============

    def _cached(self, cache: dict, key) -> Optional[object]:
        if key not in cache:
            raise RuntimeError(f"Record {key!r} must be read before it can be written")
        return cache[key]

    async def apply(self, pair: Pair, writes: Sequence[Write]) -> int:
        """Apply ``writes`` for ``pair``; returns how many records were touched"""
        self._writing = True
        touched = 0
        for write in writes:
            if await self._apply_one(pair, write):
                touched += 1
        return touched

    async def _apply_one(self, pair: Pair, write: Write) -> bool:
        if isinstance(write, PutRelationship):
            return self._put_relationship(pair, write)
        if isinstance(write, DeleteRelationship):
            return await self._delete(self._relationships, pair.key)
        if isinstance(write, PutMirror):
            return self._put_mirror(write)
        if isinstance(write, DeleteMirror):
            return await self._delete(self._mirrors, (write.owner_id, write.other_user_id))
        if isinstance(write, PutConversation):
            return self._put_conversation(pair, write)
        if isinstance(write, DeactivateConversation):
            return self._deactivate_conversation(pair, write)
        if isinstance(write, DeleteConversation):
            return await self._delete(self._chats, pair.key)
        if isinstance(write, RecordEvent):
            self.session.add(
                FriendshipEvent(
                    id=uuid.uuid4().hex,
                    friendship_id=pair.key,
                    action=write.action.value,
                    initiator_id=write.initiator_id,
                    target_id=write.target_id,
                    timestamp=utcnow(),
                )
            )
            return True
        raise TypeError(f"Unsupported write: {write!r}")

    async def _delete(self, cache: dict, key) -> bool:
        row = self._cached(cache, key)
        if row is None:
            return False
        await self.session.delete(row)
        cache[key] = None
        return True

    def _put_relationship(self, pair: Pair, write: PutRelationship) -> bool:
        row = self._cached(self._relationships, pair.key)
        now = utcnow()
        if row is None:
            row = Friendship(
                id=pair.key,
                user_a_id=pair.user_a,
                user_b_id=pair.user_b,
                status=write.status.value,
                initiator_id=write.initiator_id,
                blocked_by=write.blocked_by,
                created_at=now,
                updated_at=now,
            )
            self.session.add(row)
            self._relationships[pair.key] = row
            return True

        row.status = write.status.value
        row.initiator_id = write.initiator_id
        row.blocked_by = write.blocked_by
        row.updated_at = now
        return True

    def _put_mirror(self, write: PutMirror) -> bool:
        mirror_key = (write.owner_id, write.other_user_id)
        row = self._cached(self._mirrors, mirror_key)
        now = utcnow()
        if row is None:
            row = UserFriendship(
                owner_id=write.owner_id,
                other_user_id=write.other_user_id,
                friendship_id=write.relationship_key,
                status=write.status.value,
                role=write.role.value,
                created_at=now,
                updated_at=now,
            )
            self.session.add(row)
            self._mirrors[mirror_key] = row
            return True

        wanted = {
            "friendship_id": write.relationship_key,
            "status": write.status.value,
            "role": write.role.value,
        }
        changed = {name: value for name, value in wanted.items() if getattr(row, name) != value}
        if not changed:
            return False
        for name, value in changed.items():
            setattr(row, name, value)
        row.updated_at = now
        return True

    def _put_conversation(self, pair: Pair, write: PutConversation) -> bool:
        row = self._cached(self._chats, pair.key)
        now = utcnow()
        if row is None:
            row = Chat(
                id=pair.key,
                participants=list(write.participants),
                created_at=now,
                updated_at=now,
                last_message_at=now,
                is_active=True,
                expiration_days=None,
            )
            self.session.add(row)
            self._chats[pair.key] = row
            return True
        participants = list(write.participants)
        if row.is_active and row.participants == participants:
            return False
        row.is_active = True
        row.participants = participants
        row.updated_at = now
        return True

    def _deactivate_conversation(self, pair: Pair, write: DeactivateConversation) -> bool:
        row = self._cached(self._chats, pair.key)
        if row is None:
            return False
        changed = row.is_active
        if row.is_active:
            row.is_active = False
        if write.participants is not None and row.participants != list(write.participants):
            row.participants = list(write.participants)
            changed = True
        if changed:
            row.updated_at = utcnow()
        return changed
