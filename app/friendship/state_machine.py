"""
Friendship state machine

Pure transition logic. Given a snapshot of the four records for a user pair,
an action and the acting user, ``transition`` returns either the writes that
move the pair into its next state or a ``Rejected`` carrying a stable reason
code. Nothing here touches the database.

The derivation rules for the mirror and chat records live in
``derive_records`` and are shared with the reconciler, so a transition and a
repair always agree on what a healthy pair looks like.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union


class RelationshipStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    BLOCKED = "blocked"


class RelationshipState(str, Enum):
    """Status plus the implicit 'no record' state"""

    ABSENT = "absent"
    PENDING = "pending"
    ACCEPTED = "accepted"
    BLOCKED = "blocked"


class Action(str, Enum):
    SEND_REQUEST = "send_request"
    ACCEPT = "accept"
    REJECT = "reject"
    UNFRIEND = "unfriend"
    BLOCK = "block"
    UNBLOCK = "unblock"


class MirrorRole(str, Enum):
    INITIATOR = "initiator"
    RECIPIENT = "recipient"
    BLOCKER = "blocker"
    BLOCKED = "blocked"


class RejectionReason(str, Enum):
    NOT_PENDING = "not-pending"
    NOT_ACCEPTED = "not-accepted"
    NOT_BLOCKED = "not-blocked"
    NOT_AUTHORIZED = "not-authorized"
    NOT_FOUND = "not-found"
    ALREADY_PENDING = "already-pending"
    ALREADY_FRIENDS = "already-friends"
    SELF_TARGET = "self-target"


class ConversationRule(str, Enum):
    """What a healthy pair requires of its chat record"""

    ACTIVE = "active"
    INACTIVE_IF_PRESENT = "inactive_if_present"
    ABSENT = "absent"


class ArchiveReason(str, Enum):
    UNFRIENDED = "unfriended"
    BLOCKED = "blocked"
    MANUAL = "manual"


class EventAction(str, Enum):
    UNFRIEND = "unfriend"
    UNBLOCK = "unblock"


# ============ Record views ============


PAIR_KEY_SEPARATOR = "_"


@dataclass(frozen=True)
class Pair:
    """Unordered pair of distinct users, stored sorted

    Ids may not contain ``PAIR_KEY_SEPARATOR``, which keeps ``key`` unique per pair.
    """

    user_a: str
    user_b: str

    @classmethod
    def of(cls, first: str, second: str) -> "Pair":
        if not first or not second:
            raise ValueError("Both user ids are required")
        if first == second:
            raise ValueError("A pair needs two different users")
        if PAIR_KEY_SEPARATOR in first or PAIR_KEY_SEPARATOR in second:
            raise ValueError(f"User ids cannot contain {PAIR_KEY_SEPARATOR!r}")
        low, high = sorted((first, second))
        return cls(low, high)

    @property
    def key(self) -> str:
        return f"{self.user_a}{PAIR_KEY_SEPARATOR}{self.user_b}"

    @property
    def members(self) -> Tuple[str, str]:
        return (self.user_a, self.user_b)

    def __contains__(self, user_id: object) -> bool:
        return user_id == self.user_a or user_id == self.user_b

    def other(self, user_id: str) -> str:
        if user_id == self.user_a:
            return self.user_b
        if user_id == self.user_b:
            return self.user_a
        raise ValueError(f"{user_id} is not part of {self.key}")


def pair_key(first: str, second: str) -> str:
    """Order-independent key shared by the friendship and its chat"""
    return Pair.of(first, second).key


@dataclass(frozen=True)
class RelationshipView:
    pair: Pair
    status: RelationshipStatus
    initiator_id: str
    blocked_by: Optional[str] = None

    @property
    def key(self) -> str:
        return self.pair.key


@dataclass(frozen=True)
class MirrorView:
    owner_id: str
    other_user_id: str
    relationship_key: str
    status: RelationshipStatus
    role: MirrorRole


@dataclass(frozen=True)
class ConversationView:
    key: str
    participants: Tuple[str, ...]
    is_active: bool


@dataclass(frozen=True)
class Snapshot:
    """Everything a transition may look at, read in one transaction"""

    pair: Pair
    relationship: Optional[RelationshipView] = None
    mirrors: Dict[str, Optional[MirrorView]] = field(default_factory=dict)
    conversation: Optional[ConversationView] = None

    @property
    def state(self) -> RelationshipState:
        if self.relationship is None:
            return RelationshipState.ABSENT
        return RelationshipState(self.relationship.status.value)

    def mirror(self, owner_id: str) -> Optional[MirrorView]:
        return self.mirrors.get(owner_id)


# ============ Writes (inside the transaction) ============


@dataclass(frozen=True)
class PutRelationship:
    status: RelationshipStatus
    initiator_id: str
    blocked_by: Optional[str] = None


@dataclass(frozen=True)
class DeleteRelationship:
    pass


@dataclass(frozen=True)
class PutMirror:
    owner_id: str
    other_user_id: str
    relationship_key: str
    status: RelationshipStatus
    role: MirrorRole


@dataclass(frozen=True)
class DeleteMirror:
    owner_id: str
    other_user_id: str


@dataclass(frozen=True)
class PutConversation:
    """Create the chat, or re-activate an existing one"""

    participants: Tuple[str, ...]


@dataclass(frozen=True)
class DeactivateConversation:
    """Close the chat; with ``participants`` also reset who is in it"""

    participants: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class DeleteConversation:
    pass


@dataclass(frozen=True)
class RecordEvent:
    action: EventAction
    initiator_id: str
    target_id: str


Write = Union[
    PutRelationship,
    DeleteRelationship,
    PutMirror,
    DeleteMirror,
    PutConversation,
    DeactivateConversation,
    DeleteConversation,
    RecordEvent,
]


# ============ Side effects (after commit) ============


@dataclass(frozen=True)
class ArchiveContent:
    conversation_key: str
    owner_id: str
    reason: ArchiveReason


@dataclass(frozen=True)
class RetireConversationContent:
    """Content left behind by a deleted chat; retention policy decides its fate"""

    conversation_key: str
    participants: Tuple[str, ...]


@dataclass(frozen=True)
class Notify:
    target_user_id: str
    event_type: str
    payload: Dict[str, str]


Effect = Union[ArchiveContent, RetireConversationContent, Notify]


# ============ Decisions ============


@dataclass(frozen=True)
class Transition:
    state: RelationshipState
    writes: Tuple[Write, ...]
    effects: Tuple[Effect, ...] = ()


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    message: str


Decision = Union[Transition, Rejected]


@dataclass(frozen=True)
class DerivedRecords:
    mirrors: Tuple[PutMirror, PutMirror]
    conversation: ConversationRule


def derive_records(relationship: RelationshipView) -> DerivedRecords:
    """Mirror and chat shape required by a relationship in its current status"""
    pair = relationship.pair
    if relationship.status is RelationshipStatus.BLOCKED:
        first_role = {relationship.blocked_by: MirrorRole.BLOCKER}
        default_role = MirrorRole.BLOCKED
        conversation = ConversationRule.ABSENT
    else:
        first_role = {relationship.initiator_id: MirrorRole.INITIATOR}
        default_role = MirrorRole.RECIPIENT
        if relationship.status is RelationshipStatus.ACCEPTED:
            conversation = ConversationRule.ACTIVE
        else:
            conversation = ConversationRule.INACTIVE_IF_PRESENT

    mirrors = tuple(
        PutMirror(
            owner_id=owner,
            other_user_id=pair.other(owner),
            relationship_key=pair.key,
            status=relationship.status,
            role=first_role.get(owner, default_role),
        )
        for owner in pair.members
    )
    return DerivedRecords(mirrors=mirrors, conversation=conversation)


def _delete_all(snapshot: Snapshot) -> Tuple[Write, ...]:
    pair = snapshot.pair
    return (
        DeleteRelationship(),
        DeleteMirror(pair.user_a, pair.user_b),
        DeleteMirror(pair.user_b, pair.user_a),
    )


def _send_request(snapshot: Snapshot, actor_id: str) -> Decision:
    state = snapshot.state
    if state is RelationshipState.BLOCKED:
        # A block looks exactly like an unknown user to either side
        return Rejected(RejectionReason.NOT_FOUND, "User not found")
    if state is RelationshipState.ACCEPTED:
        return Rejected(RejectionReason.ALREADY_FRIENDS, "Already friends with this user")
    if state is RelationshipState.PENDING:
        return Rejected(RejectionReason.ALREADY_PENDING, "Friend request already pending")

    target_id = snapshot.pair.other(actor_id)
    relationship = RelationshipView(snapshot.pair, RelationshipStatus.PENDING, initiator_id=actor_id)
    derived = derive_records(relationship)
    return Transition(
        state=RelationshipState.PENDING,
        writes=(PutRelationship(RelationshipStatus.PENDING, initiator_id=actor_id), *derived.mirrors),
        effects=(
            Notify(target_id, "friendRequest", {"senderId": actor_id, "relationshipKey": snapshot.pair.key}),
        ),
    )


def _accept(snapshot: Snapshot, actor_id: str) -> Decision:
    current = snapshot.relationship
    if current.status is not RelationshipStatus.PENDING:
        return Rejected(RejectionReason.NOT_PENDING, "This request is no longer pending")

    accepted = RelationshipView(snapshot.pair, RelationshipStatus.ACCEPTED, initiator_id=current.initiator_id)
    derived = derive_records(accepted)
    other_id = snapshot.pair.other(actor_id)
    return Transition(
        state=RelationshipState.ACCEPTED,
        writes=(
            PutRelationship(RelationshipStatus.ACCEPTED, initiator_id=current.initiator_id),
            *derived.mirrors,
            PutConversation(participants=snapshot.pair.members),
        ),
        effects=(
            Notify(other_id, "friendRequestAccepted", {"friendId": actor_id, "relationshipKey": snapshot.pair.key}),
        ),
    )


def _reject(snapshot: Snapshot, actor_id: str) -> Decision:
    if snapshot.relationship.status is not RelationshipStatus.PENDING:
        return Rejected(RejectionReason.NOT_PENDING, "This request is no longer pending")
    return Transition(state=RelationshipState.ABSENT, writes=_delete_all(snapshot))


def _unfriend(snapshot: Snapshot, actor_id: str) -> Decision:
    if snapshot.relationship.status is not RelationshipStatus.ACCEPTED:
        return Rejected(RejectionReason.NOT_ACCEPTED, "You are not currently friends with this user")

    other_id = snapshot.pair.other(actor_id)
    writes = [RecordEvent(EventAction.UNFRIEND, actor_id, other_id), *_delete_all(snapshot)]
    effects = []
    if snapshot.conversation is not None:
        # Keep the chat for history; only its content gets archived
        writes.append(DeactivateConversation())
        key = snapshot.conversation.key
        effects = [
            ArchiveContent(key, actor_id, ArchiveReason.UNFRIENDED),
            ArchiveContent(key, other_id, ArchiveReason.UNFRIENDED),
        ]
    return Transition(state=RelationshipState.ABSENT, writes=tuple(writes), effects=tuple(effects))


def _block(snapshot: Snapshot, actor_id: str) -> Decision:
    current = snapshot.relationship
    initiator_id = current.initiator_id if current is not None else actor_id
    blocked = RelationshipView(
        snapshot.pair, RelationshipStatus.BLOCKED, initiator_id=initiator_id, blocked_by=actor_id
    )
    derived = derive_records(blocked)
    writes = [
        PutRelationship(RelationshipStatus.BLOCKED, initiator_id=initiator_id, blocked_by=actor_id),
        *derived.mirrors,
    ]
    effects = []
    if snapshot.conversation is not None:
        writes.append(DeleteConversation())
        effects.append(RetireConversationContent(snapshot.conversation.key, snapshot.pair.members))
    return Transition(state=RelationshipState.BLOCKED, writes=tuple(writes), effects=tuple(effects))


def _unblock(snapshot: Snapshot, actor_id: str) -> Decision:
    current = snapshot.relationship
    if current.status is not RelationshipStatus.BLOCKED:
        return Rejected(RejectionReason.NOT_BLOCKED, "This user is not blocked")
    if current.blocked_by != actor_id:
        return Rejected(RejectionReason.NOT_AUTHORIZED, "You did not block this user")

    other_id = snapshot.pair.other(actor_id)
    return Transition(
        state=RelationshipState.ABSENT,
        writes=(*_delete_all(snapshot), RecordEvent(EventAction.UNBLOCK, actor_id, other_id)),
    )


_HANDLERS = {
    Action.SEND_REQUEST: _send_request,
    Action.ACCEPT: _accept,
    Action.REJECT: _reject,
    Action.UNFRIEND: _unfriend,
    Action.BLOCK: _block,
    Action.UNBLOCK: _unblock,
}

# Actions that operate on an existing record and fail with not-found without one
_REQUIRES_RELATIONSHIP = {Action.ACCEPT, Action.REJECT, Action.UNFRIEND, Action.UNBLOCK}

_NOT_FOUND_MESSAGES = {
    Action.ACCEPT: "Friend request not found",
    Action.REJECT: "Friend request not found",
    Action.UNFRIEND: "Friendship not found",
    Action.UNBLOCK: "No block record found",
}


def transition(snapshot: Snapshot, action: Action, actor_id: str) -> Decision:
    """Decide the outcome of ``action`` by ``actor_id`` against ``snapshot``"""
    if action in _REQUIRES_RELATIONSHIP and snapshot.relationship is None:
        return Rejected(RejectionReason.NOT_FOUND, _NOT_FOUND_MESSAGES[action])
    if actor_id not in snapshot.pair:
        return Rejected(RejectionReason.NOT_AUTHORIZED, "You do not have permission to change this relationship")
    return _HANDLERS[action](snapshot, actor_id)
