import pytest
from sqlalchemy import delete, update
from sqlalchemy.exc import OperationalError

from app.core.errors import InternalError, InvalidArgumentError
from app.core.time import utcnow
from app.friendship.state_machine import MirrorRole, RelationshipStatus, pair_key
from app.models import Chat, Friendship, UserFriendship

ALICE = "u-alice"
BOB = "u-bob"
CAROL = "u-carol"
KEY = pair_key(ALICE, BOB)


async def befriend(service, sender=ALICE, recipient=BOB):
    sent = await service.send_friend_request(sender, recipient)
    await service.accept_friend_request(recipient, sent.relationship_key)


async def execute(store, statement):
    async with store.session() as session:
        async with session.begin():
            await session.execute(statement)


@pytest.mark.asyncio
async def test_consistent_pair_reports_no_issues(service):
    await befriend(service)

    report = await service.check_consistency(BOB, ALICE)
    assert report.is_consistent
    assert report.relationship_key == KEY
    assert report.relationship_status == "accepted"
    assert report.conversation_active is True
    assert [m.owner_id for m in report.mirrors] == [ALICE, BOB]


@pytest.mark.asyncio
async def test_repair_heals_drift_and_is_idempotent(service, store, assert_consistent):
    await befriend(service)

    # Simulate a crash that left the derived records behind
    await execute(store, delete(UserFriendship).where(UserFriendship.owner_id == BOB))
    await execute(
        store,
        update(UserFriendship)
        .where(UserFriendship.owner_id == ALICE)
        .values(status="pending", role="blocked", version=UserFriendship.version + 1),
    )
    await execute(store, update(Chat).values(is_active=False, version=Chat.version + 1))

    report = await service.check_consistency(ALICE, BOB)
    assert not report.is_consistent
    assert len(report.issues) == 3

    result = await service.repair(ALICE, BOB)
    assert result.writes_applied == 3
    assert result.status == "accepted"
    assert not result.nothing_to_repair

    snapshot = await assert_consistent(ALICE, BOB)
    assert snapshot.mirror(ALICE).role is MirrorRole.INITIATOR
    assert snapshot.mirror(BOB).status is RelationshipStatus.ACCEPTED
    assert snapshot.conversation.is_active

    again = await service.repair(ALICE, BOB)
    assert again.nothing_to_repair


@pytest.mark.asyncio
async def test_repair_removes_conversation_of_blocked_pair(service, store, assert_consistent):
    await service.block_user(ALICE, BOB)
    now = utcnow()
    async with store.session() as session:
        async with session.begin():
            session.add(Chat(id=KEY, participants=[ALICE, BOB], created_at=now, updated_at=now, last_message_at=now))

    result = await service.repair(ALICE, BOB)
    assert result.repaired == ("conversation present while blocked",)
    snapshot = await assert_consistent(ALICE, BOB)
    assert snapshot.conversation is None


@pytest.mark.asyncio
async def test_repair_deactivates_conversation_of_pending_pair(service, store, snapshot_of):
    await service.send_friend_request(ALICE, BOB)
    now = utcnow()
    async with store.session() as session:
        async with session.begin():
            session.add(Chat(id=KEY, participants=[ALICE, BOB], created_at=now, updated_at=now, last_message_at=now))

    result = await service.repair(ALICE, BOB)
    assert result.writes_applied == 1
    snapshot = await snapshot_of(ALICE, BOB)
    assert snapshot.conversation.is_active is False


@pytest.mark.asyncio
async def test_absent_relationship_is_nothing_to_repair(service, snapshot_of):
    await service.send_friend_request(ALICE, BOB)
    await service.reject_friend_request(BOB, KEY)

    result = await service.repair(ALICE, BOB)
    assert result.nothing_to_repair
    assert result.status is None
    snapshot = await snapshot_of(ALICE, BOB)
    assert snapshot.relationship is None
    assert snapshot.conversation is None


@pytest.mark.asyncio
async def test_orphan_mirror_is_reported_not_deleted(service, store, snapshot_of):
    await service.send_friend_request(ALICE, BOB)
    await execute(store, delete(Friendship))

    report = await service.check_consistency(ALICE, BOB)
    assert not report.relationship_exists
    assert report.issues == (f"orphan mirror for {ALICE}", f"orphan mirror for {BOB}")

    result = await service.repair(ALICE, BOB)
    assert result.nothing_to_repair
    snapshot = await snapshot_of(ALICE, BOB)
    assert snapshot.mirror(ALICE) is not None


@pytest.mark.asyncio
async def test_repair_user_walks_every_counterpart(service, store):
    await befriend(service)
    await service.send_friend_request(CAROL, ALICE)
    await execute(store, delete(UserFriendship).where(UserFriendship.other_user_id == ALICE))

    results = await service.repair_user(ALICE)
    assert sorted(r.relationship_key for r in results) == [KEY, pair_key(ALICE, CAROL)]
    assert all(r.writes_applied == 1 for r in results)


@pytest.mark.asyncio
@pytest.mark.parametrize("user_a,user_b", [("", BOB), (ALICE, ALICE)])
async def test_invalid_pair_is_rejected(service, user_a, user_b):
    with pytest.raises(InvalidArgumentError):
        await service.check_consistency(user_a, user_b)
    with pytest.raises(InvalidArgumentError):
        await service.repair(user_a, user_b)


@pytest.mark.asyncio
async def test_repair_resets_conversation_participants(service, store, assert_consistent):
    await befriend(service)
    await execute(store, update(Chat).values(participants=[ALICE, CAROL], version=Chat.version + 1))

    report = await service.check_consistency(ALICE, BOB)
    assert report.issues == ("conversation participants differ from the pair",)

    result = await service.repair(ALICE, BOB)
    assert result.writes_applied == 1
    snapshot = await assert_consistent(ALICE, BOB)
    assert snapshot.conversation.participants == (ALICE, BOB)
    assert snapshot.conversation.is_active


@pytest.mark.asyncio
async def test_repair_fixes_participants_of_inactive_conversation(service, store, assert_consistent):
    await befriend(service)
    await service.unfriend(ALICE, BOB)
    await service.send_friend_request(ALICE, BOB)
    await execute(store, update(Chat).values(participants=[BOB], version=Chat.version + 1))

    result = await service.repair(ALICE, BOB)
    assert result.repaired == ("conversation participants differ from the pair",)
    snapshot = await assert_consistent(ALICE, BOB)
    assert snapshot.conversation.participants == (ALICE, BOB)
    assert snapshot.conversation.is_active is False


@pytest.mark.asyncio
async def test_store_failure_during_repair_is_internal(service, monkeypatch):
    async def failing(fn):
        raise OperationalError("SELECT 1", {}, Exception("connection lost"))

    monkeypatch.setattr(service.reconciler.store, "run_transaction", failing)

    with pytest.raises(InternalError):
        await service.repair(ALICE, BOB)
