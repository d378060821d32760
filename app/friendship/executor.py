"""
Transition executor

Runs one record-store transaction per friendship action:

1. derive the pair (from actor + target, or from the friendship key)
2. read the friendship, both mirrors and the chat
3. ask the state machine for a decision
4. apply its writes in the same transaction
5. commit

Every retry of the transaction repeats steps 1-4 against fresh reads. Work
that can grow without bound (content archival) and notifications are
returned as effects and run only after a successful commit.
"""

import asyncio
from dataclasses import dataclass
from functools import partial
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import InternalError, InvalidArgumentError, UnauthenticatedError
from app.core.logging import LatencyLogger, get_logger
from app.friendship.archiver import ContentArchiver
from app.friendship.notifier import Notifier
from app.friendship.repository import RelationshipRepository
from app.friendship.state_machine import (
    Action,
    ArchiveContent,
    ArchiveReason,
    Decision,
    Effect,
    Notify,
    Pair,
    Rejected,
    RejectionReason,
    RetireConversationContent,
    Transition,
    transition,
)
from app.infra.db import RecordStore, TransactionConflictError

logger = get_logger(__name__)

# Actions addressed by friendship key rather than by the other user's id
KEYED_ACTIONS = {Action.ACCEPT, Action.REJECT}


@dataclass(frozen=True)
class TransitionOutcome:
    action: Action
    actor_id: str
    relationship_key: Optional[str]
    decision: Decision
    target_id: Optional[str] = None
    target_display_name: Optional[str] = None

    @property
    def ok(self) -> bool:
        return isinstance(self.decision, Transition)

    @property
    def rejection(self) -> Optional[Rejected]:
        return self.decision if isinstance(self.decision, Rejected) else None

    @property
    def effects(self) -> Tuple[Effect, ...]:
        return self.decision.effects if isinstance(self.decision, Transition) else ()


class TransitionExecutor:
    def __init__(
        self,
        store: RecordStore,
        archiver: ContentArchiver,
        notifier: Notifier,
        timeout: float = settings.transaction_timeout_seconds,
        block_purges_content: bool = settings.block_purges_content,
    ):
        self.store = store
        self.archiver = archiver
        self.notifier = notifier
        self.timeout = timeout
        self.block_purges_content = block_purges_content

    async def execute(
        self,
        action: Action,
        actor_id: str,
        *,
        target: Optional[str] = None,
        relationship_key: Optional[str] = None,
        defer_effects: bool = False,
    ) -> TransitionOutcome:
        """
        Run ``action`` for ``actor_id``.

        Rejections come back inside the outcome. Store failures, exhausted
        retries and timeouts raise ``InternalError``; in that case nothing may
        be assumed about the commit and no effect has run. With
        ``defer_effects`` the caller is responsible for ``run_effects``.
        """
        if not actor_id:
            raise UnauthenticatedError()
        if action in KEYED_ACTIONS:
            if not relationship_key:
                raise InvalidArgumentError("Friendship ID is required")
        elif not target:
            raise InvalidArgumentError("Target user is required")

        attempt = partial(self._attempt, action, actor_id, target, relationship_key)
        try:
            with LatencyLogger("friendship.transition", logger, action=action.value, actor_id=actor_id):
                outcome = await asyncio.wait_for(self.store.run_transaction(attempt), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error("friendship.transition.timeout", action=action.value, actor_id=actor_id)
            raise InternalError("Transaction timed out", details={"action": action.value})
        except TransactionConflictError as exc:
            logger.error(
                "friendship.transition.conflict",
                action=action.value,
                actor_id=actor_id,
                attempts=exc.attempts,
            )
            raise InternalError("The relationship changed concurrently, please retry", details={"action": action.value})
        except SQLAlchemyError as exc:
            logger.exception("friendship.transition.store_error", action=action.value, actor_id=actor_id)
            raise InternalError("Record store failure", details={"action": action.value}) from exc

        if outcome.ok:
            logger.info(
                "friendship.transition.ok",
                action=action.value,
                actor_id=actor_id,
                relationship_key=outcome.relationship_key,
                state=outcome.decision.state.value,
            )
            if not defer_effects:
                await self.run_effects(outcome)
        else:
            logger.info(
                "friendship.transition.rejected",
                action=action.value,
                actor_id=actor_id,
                relationship_key=outcome.relationship_key,
                reason=outcome.rejection.reason.value,
            )
        return outcome

    async def _attempt(
        self,
        action: Action,
        actor_id: str,
        target: Optional[str],
        relationship_key: Optional[str],
        session: AsyncSession,
    ) -> TransitionOutcome:
        repo = RelationshipRepository(session)
        pair: Optional[Pair] = None
        target_id: Optional[str] = None
        display_name: Optional[str] = None

        def rejected(reason: RejectionReason, message: str, key: Optional[str] = None) -> TransitionOutcome:
            return TransitionOutcome(action, actor_id, key, Rejected(reason, message), target_id=target_id)

        if action in KEYED_ACTIONS:
            relationship = await repo.get_relationship(relationship_key)
            if relationship is None:
                return rejected(RejectionReason.NOT_FOUND, "Friend request not found", relationship_key)
            pair = relationship.pair
            if actor_id in pair:
                target_id = pair.other(actor_id)
        elif action is Action.SEND_REQUEST:
            user = await repo.resolve_user(target)
            if user is None:
                return rejected(RejectionReason.NOT_FOUND, "User not found")
            target_id, display_name = user.id, user.display_name
        else:
            target_id = target
            if action is Action.BLOCK and await repo.get_user(target_id) is None:
                return rejected(RejectionReason.NOT_FOUND, "User not found")

        if pair is None:
            if target_id == actor_id:
                return rejected(RejectionReason.SELF_TARGET, "You cannot target yourself")
            try:
                pair = Pair.of(actor_id, target_id)
            except ValueError as exc:
                raise InvalidArgumentError(str(exc)) from exc

        snapshot = await repo.load_snapshot(pair)
        decision = transition(snapshot, action, actor_id)
        if isinstance(decision, Transition):
            await repo.apply(pair, decision.writes)

        return TransitionOutcome(
            action=action,
            actor_id=actor_id,
            relationship_key=pair.key,
            decision=decision,
            target_id=target_id,
            target_display_name=display_name,
        )

    async def run_effects(self, outcome: TransitionOutcome) -> None:
        """Run post-commit effects concurrently; failures are logged, never raised"""
        effects = outcome.effects
        if not effects:
            return
        results = await asyncio.gather(*(self._run_effect(effect) for effect in effects), return_exceptions=True)
        for effect, result in zip(effects, results):
            if isinstance(result, Exception):
                logger.error(
                    "friendship.effect.failed",
                    effect=type(effect).__name__,
                    action=outcome.action.value,
                    relationship_key=outcome.relationship_key,
                    error=str(result),
                    exc_info=result,
                )

    async def _run_effect(self, effect: Effect) -> None:
        if isinstance(effect, ArchiveContent):
            await self.archiver.archive_user_content(effect.conversation_key, effect.owner_id, effect.reason)
        elif isinstance(effect, RetireConversationContent):
            if self.block_purges_content:
                await self.archiver.purge_conversation(effect.conversation_key)
            else:
                for owner_id in effect.participants:
                    await self.archiver.archive_user_content(effect.conversation_key, owner_id, ArchiveReason.BLOCKED)
        elif isinstance(effect, Notify):
            await self.notifier.notify(effect.target_user_id, effect.event_type, effect.payload)
        else:
            raise TypeError(f"Unsupported effect: {effect!r}")
