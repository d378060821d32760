"""
Friendship reconciler

A crash between commits, or a write made outside the transition path, can
leave the mirror and chat records out of step with the canonical friendship.
The reconciler re-derives what they should look like from the friendship
(using the same rules the state machine uses) and writes only the difference.
It never creates, changes or deletes the friendship itself, and an absent
friendship is reported as nothing to repair.
"""

import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.errors import InternalError, InvalidArgumentError
from app.core.logging import LatencyLogger, get_logger
from app.friendship.repository import RelationshipRepository
from app.friendship.state_machine import (
    ConversationRule,
    DeactivateConversation,
    DeleteConversation,
    Pair,
    PutConversation,
    Snapshot,
    Write,
    derive_records,
)
from app.infra.db import RecordStore, TransactionConflictError

logger = get_logger(__name__)


@dataclass(frozen=True)
class MirrorReport:
    owner_id: str
    exists: bool
    status: Optional[str] = None
    role: Optional[str] = None


@dataclass(frozen=True)
class ConsistencyReport:
    relationship_key: str
    relationship_exists: bool
    relationship_status: Optional[str]
    initiator_id: Optional[str]
    blocked_by: Optional[str]
    mirrors: Tuple[MirrorReport, ...]
    conversation_exists: bool
    conversation_active: Optional[bool]
    issues: Tuple[str, ...] = ()

    @property
    def is_consistent(self) -> bool:
        return not self.issues


@dataclass(frozen=True)
class RepairResult:
    relationship_key: str
    status: Optional[str]
    writes_applied: int
    repaired: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def nothing_to_repair(self) -> bool:
        return self.writes_applied == 0


def plan_repair(snapshot: Snapshot) -> Tuple[List[Write], List[str]]:
    """Writes that bring the derived records in line, plus a description of each problem"""
    relationship = snapshot.relationship
    if relationship is None:
        orphans = [
            f"orphan mirror for {owner_id}"
            for owner_id, mirror in snapshot.mirrors.items()
            if mirror is not None
        ]
        return [], orphans

    writes: List[Write] = []
    issues: List[str] = []
    derived = derive_records(relationship)

    for expected in derived.mirrors:
        current = snapshot.mirror(expected.owner_id)
        if current is None:
            issues.append(f"missing mirror for {expected.owner_id}")
        else:
            stale = [
                name
                for name, have, want in (
                    ("status", current.status, expected.status),
                    ("role", current.role, expected.role),
                    ("relationship_key", current.relationship_key, expected.relationship_key),
                )
                if have != want
            ]
            if not stale:
                continue
            issues.append(f"stale mirror for {expected.owner_id}: {', '.join(stale)}")
        writes.append(expected)

    members = snapshot.pair.members
    conversation = snapshot.conversation
    wrong_participants = conversation is not None and tuple(sorted(conversation.participants)) != members
    if derived.conversation is ConversationRule.ACTIVE:
        if conversation is None:
            issues.append("missing conversation")
        elif not conversation.is_active:
            issues.append("inactive conversation")
        if wrong_participants:
            issues.append("conversation participants differ from the pair")
        if conversation is None or not conversation.is_active or wrong_participants:
            writes.append(PutConversation(participants=members))
    elif derived.conversation is ConversationRule.INACTIVE_IF_PRESENT:
        if conversation is not None and conversation.is_active:
            issues.append("active conversation without friendship")
        if wrong_participants:
            issues.append("conversation participants differ from the pair")
        if conversation is not None and (conversation.is_active or wrong_participants):
            writes.append(DeactivateConversation(participants=members))
    elif conversation is not None:
        issues.append("conversation present while blocked")
        writes.append(DeleteConversation())

    return writes, issues


def _pair(user_a: str, user_b: str) -> Pair:
    try:
        return Pair.of(user_a, user_b)
    except ValueError as exc:
        raise InvalidArgumentError(str(exc)) from exc


class Reconciler:
    def __init__(self, store: RecordStore, timeout: float = settings.transaction_timeout_seconds):
        self.store = store
        self.timeout = timeout

    async def check_consistency(self, user_a: str, user_b: str) -> ConsistencyReport:
        """Read-only diagnostic of the four records of a pair"""
        pair = _pair(user_a, user_b)
        async with self.store.session() as session:
            snapshot = await RelationshipRepository(session).load_snapshot(pair)
        _, issues = plan_repair(snapshot)

        relationship = snapshot.relationship
        conversation = snapshot.conversation
        report = ConsistencyReport(
            relationship_key=pair.key,
            relationship_exists=relationship is not None,
            relationship_status=relationship.status.value if relationship else None,
            initiator_id=relationship.initiator_id if relationship else None,
            blocked_by=relationship.blocked_by if relationship else None,
            mirrors=tuple(
                MirrorReport(
                    owner_id=owner_id,
                    exists=mirror is not None,
                    status=mirror.status.value if mirror else None,
                    role=mirror.role.value if mirror else None,
                )
                for owner_id, mirror in ((owner, snapshot.mirror(owner)) for owner in pair.members)
            ),
            conversation_exists=conversation is not None,
            conversation_active=conversation.is_active if conversation else None,
            issues=tuple(issues),
        )
        logger.info(
            "reconcile.checked",
            relationship_key=pair.key,
            consistent=report.is_consistent,
            issues=len(issues),
        )
        return report

    async def repair(self, user_a: str, user_b: str) -> RepairResult:
        pair = _pair(user_a, user_b)

        async def attempt(session: AsyncSession) -> RepairResult:
            repo = RelationshipRepository(session)
            snapshot = await repo.load_snapshot(pair)
            if snapshot.relationship is None:
                return RepairResult(relationship_key=pair.key, status=None, writes_applied=0)
            writes, issues = plan_repair(snapshot)
            applied = await repo.apply(pair, writes) if writes else 0
            return RepairResult(
                relationship_key=pair.key,
                status=snapshot.relationship.status.value,
                writes_applied=applied,
                repaired=tuple(issues),
            )

        try:
            with LatencyLogger("reconcile.repair", logger, relationship_key=pair.key):
                result = await asyncio.wait_for(self.store.run_transaction(attempt), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise InternalError("Repair timed out", details={"relationship_key": pair.key})
        except TransactionConflictError:
            raise InternalError("The relationship changed during repair, please retry")
        except SQLAlchemyError as exc:
            logger.exception("reconcile.store_error", relationship_key=pair.key)
            raise InternalError("Record store failure", details={"relationship_key": pair.key}) from exc

        if result.nothing_to_repair:
            logger.info("reconcile.nothing_to_repair", relationship_key=pair.key, status=result.status)
        else:
            logger.warning(
                "reconcile.repaired",
                relationship_key=pair.key,
                status=result.status,
                writes_applied=result.writes_applied,
                repaired=list(result.repaired),
            )
        return result

    async def repair_user(self, user_id: str) -> List[RepairResult]:
        """Repair every pair in which ``user_id`` appears"""
        if not user_id:
            raise InvalidArgumentError("User ID is required")
        async with self.store.session() as session:
            counterparts = await RelationshipRepository(session).counterparts(user_id)
        return [await self.repair(user_id, other_id) for other_id in sorted(counterparts)]
