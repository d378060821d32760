import httpx
import pytest
import pytest_asyncio

from app.core.deps import get_friendship_service
from app.core.token import create_access_token
from app.main import app

ALICE = "u-alice"
BOB = "u-bob"
CAROL = "u-carol"
KEY = "u-alice_u-bob"


def auth(user_id):
    return {"Authorization": f"Bearer {create_access_token({'sub': user_id})}"}


@pytest_asyncio.fixture
async def client(service):
    app.dependency_overrides[get_friendship_service] = lambda: service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_friend_request_flow(client, notifier):
    sent = await client.post("/friends/requests", json={"target": "bob@example.com"}, headers=auth(ALICE))
    assert sent.status_code == 201
    body = sent.json()
    assert body["relationship_key"] == KEY
    assert body["target_user_id"] == BOB
    assert body["target_display_name"] == "Bob"
    # Notification ran as a background task once the response was produced
    assert notifier.sent[0][:2] == (BOB, "friendRequest")

    accepted = await client.post(f"/friends/requests/{KEY}/accept", headers=auth(BOB))
    assert accepted.status_code == 200
    assert accepted.json() == {"success": True}

    listed = await client.get("/friends", params={"status": "accepted"}, headers=auth(ALICE))
    assert listed.status_code == 200
    assert listed.json()["items"] == [
        {"friend_id": BOB, "relationship_key": KEY, "status": "accepted", "role": "initiator"}
    ]

    removed = await client.delete(f"/friends/{BOB}", headers=auth(ALICE))
    assert removed.status_code == 200
    assert (await client.get("/friends", headers=auth(ALICE))).json()["items"] == []


@pytest.mark.asyncio
async def test_missing_token_is_unauthenticated(client):
    response = await client.get("/friends")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHENTICATED"

    bad = await client.get("/friends", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "setup,method,path,user,status_code,code,reason",
    [
        ([], "post", f"/friends/requests/{KEY}/accept", BOB, 404, "NOT_FOUND", "not-found"),
        ([("send", ALICE, BOB)], "post", f"/friends/requests/{KEY}/accept", CAROL, 403, "PERMISSION_DENIED", "not-authorized"),
        ([("send", ALICE, BOB)], "delete", f"/friends/{BOB}", ALICE, 409, "FAILED_PRECONDITION", "not-accepted"),
        ([("block", ALICE, BOB)], "delete", f"/friends/blocks/{ALICE}", BOB, 403, "PERMISSION_DENIED", "not-authorized"),
        ([], "delete", f"/friends/blocks/{BOB}", ALICE, 404, "NOT_FOUND", "not-found"),
        ([("send", ALICE, BOB)], "post", "/friends/requests", BOB, 409, "ALREADY_EXISTS", "already-pending"),
    ],
)
async def test_rejections_map_to_error_codes(client, service, setup, method, path, user, status_code, code, reason):
    for action, actor, target in setup:
        if action == "send":
            await service.send_friend_request(actor, target)
        else:
            await service.block_user(actor, target)

    kwargs = {"headers": auth(user)}
    if path == "/friends/requests":
        kwargs["json"] = {"target": ALICE}
    response = await getattr(client, method)(path, **kwargs)

    assert response.status_code == status_code
    error = response.json()["error"]
    assert error["code"] == code
    assert error["details"]["reason"] == reason


@pytest.mark.asyncio
async def test_invalid_payload_is_invalid_argument(client):
    response = await client.post("/friends/requests", json={"target": ""}, headers=auth(ALICE))
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_ARGUMENT"

    bad_filter = await client.get("/friends", params={"status": "enemies"}, headers=auth(ALICE))
    assert bad_filter.status_code == 400


@pytest.mark.asyncio
async def test_block_and_unblock(client, service):
    blocked = await client.post(f"/friends/blocks/{BOB}", headers=auth(ALICE))
    assert blocked.status_code == 200

    hidden = await client.post("/friends/requests", json={"target": ALICE}, headers=auth(BOB))
    assert hidden.status_code == 404

    lifted = await client.delete(f"/friends/blocks/{BOB}", headers=auth(ALICE))
    assert lifted.status_code == 200


@pytest.mark.asyncio
async def test_consistency_and_repair_routes(client, service):
    await service.send_friend_request(ALICE, BOB)

    report = await client.get(f"/friends/{BOB}/consistency", headers=auth(ALICE))
    assert report.status_code == 200
    body = report.json()
    assert body["is_consistent"] is True
    assert body["relationship_status"] == "pending"
    assert {m["owner_id"] for m in body["mirrors"]} == {ALICE, BOB}

    repaired = await client.post(f"/friends/{BOB}/repair", headers=auth(ALICE))
    assert repaired.status_code == 200
    assert repaired.json()["nothing_to_repair"] is True


@pytest.mark.asyncio
async def test_admin_archive_route(client, add_messages):
    await add_messages(KEY, BOB, 1)
    payload = {"conversation_id": KEY, "owner_id": BOB}

    denied = await client.post("/friends/admin/archive", json=payload, headers=auth(ALICE))
    assert denied.status_code == 403

    done = await client.post("/friends/admin/archive", json=payload, headers=auth("u-admin"))
    assert done.status_code == 200
    assert done.json() == {"success": True, "archived_count": 1}
