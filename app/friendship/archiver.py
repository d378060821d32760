"""
Content archival

When a friendship ends, content the two users exchanged is archived instead
of deleted: the sender keeps ownership of what they created. Archival runs
after the friendship transaction commits, in batches of at most
``settings.archive_batch_size`` writes per commit, and is safe to re-run.
"""

from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from sqlalchemy import delete, select, update

from app.core.config import settings
from app.core.logging import get_logger
from app.core.time import utcnow
from app.friendship.state_machine import ArchiveReason
from app.infra.db import RecordStore
from app.models.message import ChatMessage

logger = get_logger(__name__)


@dataclass(frozen=True)
class ContentRef:
    id: str
    conversation_id: str
    owner_id: str


class ContentIndex:
    """Pages through a user's live (not deleted, not archived) content in a chat"""

    def __init__(self, store: RecordStore, page_size: int = settings.archive_batch_size):
        self.store = store
        self.page_size = page_size

    async def find_owned_content(self, conversation_id: str, owner_id: str) -> AsyncIterator[ContentRef]:
        last_id = ""
        while True:
            async with self.store.session() as session:
                result = await session.execute(
                    select(ChatMessage.id)
                    .where(
                        ChatMessage.chat_id == conversation_id,
                        ChatMessage.sender_id == owner_id,
                        ChatMessage.is_deleted.is_(False),
                        ChatMessage.is_archived.is_(False),
                        ChatMessage.id > last_id,
                    )
                    .order_by(ChatMessage.id)
                    .limit(self.page_size)
                )
                ids = list(result.scalars().all())

            for content_id in ids:
                yield ContentRef(id=content_id, conversation_id=conversation_id, owner_id=owner_id)

            if len(ids) < self.page_size:
                return
            last_id = ids[-1]


class ContentArchiver:
    def __init__(
        self,
        store: RecordStore,
        index: Optional[ContentIndex] = None,
        batch_size: int = settings.archive_batch_size,
    ):
        self.store = store
        self.batch_size = batch_size
        self.index = index or ContentIndex(store, page_size=batch_size)

    async def archive_user_content(
        self,
        conversation_id: str,
        owner_id: str,
        reason: ArchiveReason = ArchiveReason.UNFRIENDED,
    ) -> int:
        """Archive ``owner_id``'s content in ``conversation_id``; returns items newly archived"""
        archived = 0
        batch: List[str] = []
        async for ref in self.index.find_owned_content(conversation_id, owner_id):
            batch.append(ref.id)
            if len(batch) >= self.batch_size:
                archived += await self._archive_batch(batch, conversation_id, reason)
                batch = []
        if batch:
            archived += await self._archive_batch(batch, conversation_id, reason)

        if archived:
            logger.info(
                "archive.done",
                conversation_id=conversation_id,
                owner_id=owner_id,
                reason=reason.value,
                archived=archived,
            )
        else:
            logger.info("archive.nothing_to_archive", conversation_id=conversation_id, owner_id=owner_id)
        return archived

    async def _archive_batch(self, ids: List[str], conversation_id: str, reason: ArchiveReason) -> int:
        async with self.store.session() as session:
            async with session.begin():
                # Items archived meanwhile keep their original timestamp and reason
                result = await session.execute(
                    update(ChatMessage)
                    .where(ChatMessage.id.in_(ids), ChatMessage.is_archived.is_(False))
                    .values(
                        is_archived=True,
                        archived_at=utcnow(),
                        archived_reason=reason.value,
                        original_chat_id=conversation_id,
                    )
                    .execution_options(synchronize_session=False)
                )
        logger.debug("archive.batch.committed", conversation_id=conversation_id, size=result.rowcount)
        return result.rowcount

    async def purge_conversation(self, conversation_id: str) -> int:
        """Hard-delete every message of a chat, one bounded batch per commit"""
        purged = 0
        while True:
            async with self.store.session() as session:
                async with session.begin():
                    result = await session.execute(
                        select(ChatMessage.id)
                        .where(ChatMessage.chat_id == conversation_id)
                        .order_by(ChatMessage.id)
                        .limit(self.batch_size)
                    )
                    ids = list(result.scalars().all())
                    if not ids:
                        break
                    await session.execute(
                        delete(ChatMessage)
                        .where(ChatMessage.id.in_(ids))
                        .execution_options(synchronize_session=False)
                    )
            purged += len(ids)
            logger.debug("archive.purge.batch", conversation_id=conversation_id, size=len(ids))

        logger.info("archive.purged", conversation_id=conversation_id, purged=purged)
        return purged
