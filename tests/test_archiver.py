import pytest
from sqlalchemy import select

from app.core.errors import PermissionDeniedError
from app.friendship.archiver import ContentArchiver
from app.friendship.state_machine import ArchiveReason
from app.models import ChatMessage

CHAT = "u-alice_u-bob"
ALICE = "u-alice"
BOB = "u-bob"


async def messages(store):
    async with store.session() as session:
        result = await session.execute(select(ChatMessage).order_by(ChatMessage.id))
        return {m.id: m for m in result.scalars().all()}


@pytest.mark.asyncio
async def test_archives_only_owner_content_across_batches(store, archiver, add_messages):
    mine = await add_messages(CHAT, ALICE, 7)
    theirs = await add_messages(CHAT, BOB, 2)

    archived = await archiver.archive_user_content(CHAT, ALICE)

    assert archived == 7
    rows = await messages(store)
    for msg_id in mine:
        row = rows[msg_id]
        assert row.is_archived
        assert row.archived_reason == "unfriended"
        assert row.original_chat_id == CHAT
        assert row.archived_at is not None
    assert not any(rows[msg_id].is_archived for msg_id in theirs)


@pytest.mark.asyncio
async def test_rerun_does_not_restamp(store, archiver, add_messages):
    await add_messages(CHAT, ALICE, 4)
    await archiver.archive_user_content(CHAT, ALICE, ArchiveReason.BLOCKED)
    before = {msg_id: (m.archived_at, m.archived_reason) for msg_id, m in (await messages(store)).items()}

    again = await archiver.archive_user_content(CHAT, ALICE, ArchiveReason.MANUAL)

    assert again == 0
    after = {msg_id: (m.archived_at, m.archived_reason) for msg_id, m in (await messages(store)).items()}
    assert after == before


@pytest.mark.asyncio
async def test_deleted_content_is_skipped(store, archiver, add_messages):
    deleted = await add_messages(CHAT, ALICE, 2, is_deleted=True)
    await add_messages("u-alice_u-carol", ALICE, 1)

    assert await archiver.archive_user_content(CHAT, ALICE) == 0
    rows = await messages(store)
    assert not any(rows[msg_id].is_archived for msg_id in deleted)


@pytest.mark.asyncio
async def test_page_size_equal_to_content_count(store, add_messages):
    await add_messages(CHAT, ALICE, 6)
    archiver = ContentArchiver(store, batch_size=2)

    assert await archiver.archive_user_content(CHAT, ALICE) == 6


@pytest.mark.asyncio
async def test_purge_deletes_every_message_of_the_chat(store, archiver, add_messages):
    await add_messages(CHAT, ALICE, 5)
    await add_messages(CHAT, BOB, 3, is_deleted=True)
    other = await add_messages("u-bob_u-carol", BOB, 1)

    assert await archiver.purge_conversation(CHAT) == 8
    assert list(await messages(store)) == other


@pytest.mark.asyncio
async def test_manual_archive_requires_admin(service, store, add_messages):
    await add_messages(CHAT, BOB, 2)

    with pytest.raises(PermissionDeniedError):
        await service.archive_conversation_content(ALICE, CHAT, BOB)

    archived = await service.archive_conversation_content("u-admin", CHAT, BOB)
    assert archived == 2
    rows = await messages(store)
    assert {m.archived_reason for m in rows.values()} == {"manual"}
