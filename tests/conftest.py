import os
import sys
from pathlib import Path

# Settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./friendlink-test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-with-at-least-32-characters")
os.environ.setdefault("ENABLE_NOTIFICATIONS", "false")

import pytest
import pytest_asyncio

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.core.time import utcnow
from app.friendship.archiver import ContentArchiver
from app.friendship.executor import TransitionExecutor
from app.friendship.reconciler import Reconciler, plan_repair
from app.friendship.repository import RelationshipRepository
from app.friendship.service import FriendshipService
from app.friendship.state_machine import Pair
from app.infra.db import RecordStore, build_engine, build_session_factory
from app.models import Base, ChatMessage, User

ALICE = "u-alice"
BOB = "u-bob"
CAROL = "u-carol"
ADMIN = "u-admin"


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def notify(self, target_user_id, event_type, payload):
        self.sent.append((target_user_id, event_type, dict(payload)))


@pytest_asyncio.fixture
async def engine(tmp_path):
    # A file database so concurrent sessions really use separate connections
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'friendlink.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine):
    return RecordStore(build_session_factory(engine), max_attempts=2)


@pytest_asyncio.fixture
async def users(store):
    seeded = [
        User(id=ALICE, email="alice@example.com", display_name="Alice"),
        User(id=BOB, email="bob@example.com", display_name="Bob"),
        User(id=CAROL, email="carol@example.com", display_name="Carol"),
        User(id=ADMIN, email="admin@example.com", display_name="Admin", is_admin=True),
    ]
    async with store.session() as session:
        async with session.begin():
            session.add_all(seeded)
    return {user.id: user for user in seeded}


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def archiver(store):
    return ContentArchiver(store, batch_size=3)


@pytest.fixture
def make_service(store, archiver, notifier):
    def factory(block_purges_content=False):
        executor = TransitionExecutor(
            store, archiver, notifier, timeout=10.0, block_purges_content=block_purges_content
        )
        return FriendshipService(store, executor, Reconciler(store, timeout=10.0), archiver)

    return factory


@pytest.fixture
def service(make_service, users):
    return make_service()


@pytest.fixture
def snapshot_of(store):
    async def load(user_a, user_b):
        async with store.session() as session:
            return await RelationshipRepository(session).load_snapshot(Pair.of(user_a, user_b))

    return load


@pytest.fixture
def assert_consistent(snapshot_of):
    async def check(user_a, user_b):
        snapshot = await snapshot_of(user_a, user_b)
        _, issues = plan_repair(snapshot)
        assert issues == []
        if snapshot.relationship is None:
            assert snapshot.mirror(user_a) is None
            assert snapshot.mirror(user_b) is None
        return snapshot

    return check


@pytest.fixture
def add_messages(store):
    async def add(chat_id, sender_id, count, **fields):
        ids = [f"{chat_id}-{sender_id}-{i:04d}" for i in range(count)]
        async with store.session() as session:
            async with session.begin():
                session.add_all(
                    ChatMessage(id=msg_id, chat_id=chat_id, sender_id=sender_id, created_at=utcnow(), **fields)
                    for msg_id in ids
                )
        return ids

    return add
