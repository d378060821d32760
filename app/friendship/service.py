"""
Friendship service

The operations the rest of the system calls: one method per relationship
action plus the consistency diagnostic, repair and admin archival. Every
write to the friendship records goes through the executor or the reconciler
held here.
"""

from typing import Dict, List, Optional, Type

from app.core.errors import (
    AlreadyExistsError,
    AppError,
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
)
from app.core.logging import get_logger
from app.friendship.archiver import ContentArchiver
from app.friendship.executor import TransitionExecutor, TransitionOutcome
from app.friendship.notifier import Notifier, build_notifier
from app.friendship.reconciler import ConsistencyReport, Reconciler, RepairResult
from app.friendship.repository import RelationshipRepository
from app.friendship.state_machine import (
    Action,
    ArchiveReason,
    MirrorView,
    Rejected,
    RejectionReason,
    RelationshipStatus,
)
from app.infra.db import RecordStore, get_record_store

logger = get_logger(__name__)

REJECTION_ERRORS: Dict[RejectionReason, Type[AppError]] = {
    RejectionReason.NOT_PENDING: FailedPreconditionError,
    RejectionReason.NOT_ACCEPTED: FailedPreconditionError,
    RejectionReason.NOT_BLOCKED: FailedPreconditionError,
    RejectionReason.NOT_AUTHORIZED: PermissionDeniedError,
    RejectionReason.NOT_FOUND: NotFoundError,
    RejectionReason.ALREADY_PENDING: AlreadyExistsError,
    RejectionReason.ALREADY_FRIENDS: AlreadyExistsError,
    RejectionReason.SELF_TARGET: InvalidArgumentError,
}


def error_for_rejection(rejected: Rejected) -> AppError:
    error_class = REJECTION_ERRORS[rejected.reason]
    return error_class(rejected.message, details={"reason": rejected.reason.value})


def raise_for_outcome(outcome: TransitionOutcome) -> TransitionOutcome:
    """Turn a rejected outcome into its AppError; pass successful ones through"""
    if outcome.rejection is not None:
        raise error_for_rejection(outcome.rejection)
    return outcome


class FriendshipService:
    def __init__(
        self,
        store: RecordStore,
        executor: TransitionExecutor,
        reconciler: Reconciler,
        archiver: ContentArchiver,
    ):
        self.store = store
        self.executor = executor
        self.reconciler = reconciler
        self.archiver = archiver

    # ============ Transitions ============

    async def send_friend_request(
        self, actor_id: str, target_email_or_id: str, *, defer_effects: bool = False
    ) -> TransitionOutcome:
        return await self.executor.execute(
            Action.SEND_REQUEST, actor_id, target=target_email_or_id, defer_effects=defer_effects
        )

    async def accept_friend_request(
        self, actor_id: str, relationship_key: str, *, defer_effects: bool = False
    ) -> TransitionOutcome:
        return await self.executor.execute(
            Action.ACCEPT, actor_id, relationship_key=relationship_key, defer_effects=defer_effects
        )

    async def reject_friend_request(
        self, actor_id: str, relationship_key: str, *, defer_effects: bool = False
    ) -> TransitionOutcome:
        return await self.executor.execute(
            Action.REJECT, actor_id, relationship_key=relationship_key, defer_effects=defer_effects
        )

    async def unfriend(self, actor_id: str, target_id: str, *, defer_effects: bool = False) -> TransitionOutcome:
        return await self.executor.execute(Action.UNFRIEND, actor_id, target=target_id, defer_effects=defer_effects)

    async def block_user(self, actor_id: str, target_id: str, *, defer_effects: bool = False) -> TransitionOutcome:
        return await self.executor.execute(Action.BLOCK, actor_id, target=target_id, defer_effects=defer_effects)

    async def unblock_user(self, actor_id: str, target_id: str, *, defer_effects: bool = False) -> TransitionOutcome:
        return await self.executor.execute(Action.UNBLOCK, actor_id, target=target_id, defer_effects=defer_effects)

    async def run_effects(self, outcome: TransitionOutcome) -> None:
        await self.executor.run_effects(outcome)

    # ============ Consistency ============

    async def check_consistency(self, user_a: str, user_b: str) -> ConsistencyReport:
        return await self.reconciler.check_consistency(user_a, user_b)

    async def repair(self, user_a: str, user_b: str) -> RepairResult:
        return await self.reconciler.repair(user_a, user_b)

    async def repair_user(self, user_id: str) -> List[RepairResult]:
        return await self.reconciler.repair_user(user_id)

    # ============ Reads ============

    async def list_relationships(
        self, owner_id: str, status: Optional[RelationshipStatus] = None
    ) -> List[MirrorView]:
        async with self.store.session() as session:
            return await RelationshipRepository(session).list_mirrors(owner_id, status)

    # ============ Admin ============

    async def archive_conversation_content(
        self,
        actor_id: str,
        conversation_id: str,
        owner_id: str,
        reason: ArchiveReason = ArchiveReason.MANUAL,
    ) -> int:
        async with self.store.session() as session:
            actor = await RelationshipRepository(session).get_user(actor_id)
        if actor is None or not actor.is_admin:
            raise PermissionDeniedError("Admin access required")
        if not conversation_id or not owner_id:
            raise InvalidArgumentError("conversation_id and owner_id are required")

        logger.info(
            "archive.manual",
            actor_id=actor_id,
            conversation_id=conversation_id,
            owner_id=owner_id,
            reason=reason.value,
        )
        return await self.archiver.archive_user_content(conversation_id, owner_id, reason)


def build_friendship_service(
    store: Optional[RecordStore] = None,
    notifier: Optional[Notifier] = None,
) -> FriendshipService:
    store = store or get_record_store()
    archiver = ContentArchiver(store)
    executor = TransitionExecutor(store, archiver, notifier or build_notifier())
    return FriendshipService(store, executor, Reconciler(store), archiver)
