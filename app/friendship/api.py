from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Query, status

from app.core.deps import FriendshipServiceDep
from app.core.token import CurrentUserDep
from app.friendship.executor import TransitionOutcome
from app.friendship.schemas import (
    ArchiveContentPayload,
    ArchiveContentResponse,
    ConsistencyReportResponse,
    MirrorReportSchema,
    RelationshipItem,
    RelationshipListResponse,
    RepairResponse,
    SendFriendRequestPayload,
    SendFriendRequestResponse,
    SuccessResponse,
)
from app.friendship.service import FriendshipService, raise_for_outcome
from app.friendship.state_machine import RelationshipStatus

router = APIRouter(prefix="/friends", tags=["friends"])


def _finish(
    outcome: TransitionOutcome,
    service: FriendshipService,
    background_tasks: BackgroundTasks,
) -> TransitionOutcome:
    """Raise for rejections; effects of committed transitions run after the response"""
    raise_for_outcome(outcome)
    if outcome.effects:
        background_tasks.add_task(service.run_effects, outcome)
    return outcome


# ============ Requests ============

@router.post("/requests", response_model=SendFriendRequestResponse, status_code=status.HTTP_201_CREATED)
async def send_friend_request(
    payload: SendFriendRequestPayload,
    background_tasks: BackgroundTasks,
    current_user_id: CurrentUserDep,
    service: FriendshipServiceDep,
):
    outcome = await service.send_friend_request(current_user_id, payload.target, defer_effects=True)
    _finish(outcome, service, background_tasks)
    return SendFriendRequestResponse(
        relationship_key=outcome.relationship_key,
        target_user_id=outcome.target_id,
        target_display_name=outcome.target_display_name or "Unknown",
    )


@router.post("/requests/{relationship_key}/accept", response_model=SuccessResponse)
async def accept_friend_request(
    relationship_key: str,
    background_tasks: BackgroundTasks,
    current_user_id: CurrentUserDep,
    service: FriendshipServiceDep,
):
    outcome = await service.accept_friend_request(current_user_id, relationship_key, defer_effects=True)
    _finish(outcome, service, background_tasks)
    return SuccessResponse()


@router.post("/requests/{relationship_key}/reject", response_model=SuccessResponse)
async def reject_friend_request(
    relationship_key: str,
    background_tasks: BackgroundTasks,
    current_user_id: CurrentUserDep,
    service: FriendshipServiceDep,
):
    outcome = await service.reject_friend_request(current_user_id, relationship_key, defer_effects=True)
    _finish(outcome, service, background_tasks)
    return SuccessResponse()


# ============ Blocks ============

@router.post("/blocks/{user_id}", response_model=SuccessResponse)
async def block_user(
    user_id: str,
    background_tasks: BackgroundTasks,
    current_user_id: CurrentUserDep,
    service: FriendshipServiceDep,
):
    outcome = await service.block_user(current_user_id, user_id, defer_effects=True)
    _finish(outcome, service, background_tasks)
    return SuccessResponse()


@router.delete("/blocks/{user_id}", response_model=SuccessResponse)
async def unblock_user(
    user_id: str,
    background_tasks: BackgroundTasks,
    current_user_id: CurrentUserDep,
    service: FriendshipServiceDep,
):
    outcome = await service.unblock_user(current_user_id, user_id, defer_effects=True)
    _finish(outcome, service, background_tasks)
    return SuccessResponse()


# ============ Admin ============

@router.post("/admin/archive", response_model=ArchiveContentResponse)
async def archive_conversation_content(
    payload: ArchiveContentPayload,
    current_user_id: CurrentUserDep,
    service: FriendshipServiceDep,
):
    archived = await service.archive_conversation_content(
        current_user_id, payload.conversation_id, payload.owner_id, payload.reason
    )
    return ArchiveContentResponse(archived_count=archived)


# ============ Friends ============

@router.get("", response_model=RelationshipListResponse)
async def list_relationships(
    current_user_id: CurrentUserDep,
    service: FriendshipServiceDep,
    status_filter: Optional[RelationshipStatus] = Query(None, alias="status"),
):
    mirrors = await service.list_relationships(current_user_id, status_filter)
    return RelationshipListResponse(
        items=[
            RelationshipItem(
                friend_id=mirror.other_user_id,
                relationship_key=mirror.relationship_key,
                status=mirror.status.value,
                role=mirror.role.value,
            )
            for mirror in mirrors
        ]
    )


@router.delete("/{friend_id}", response_model=SuccessResponse)
async def unfriend(
    friend_id: str,
    background_tasks: BackgroundTasks,
    current_user_id: CurrentUserDep,
    service: FriendshipServiceDep,
):
    outcome = await service.unfriend(current_user_id, friend_id, defer_effects=True)
    _finish(outcome, service, background_tasks)
    return SuccessResponse()


@router.get("/{friend_id}/consistency", response_model=ConsistencyReportResponse)
async def check_consistency(
    friend_id: str,
    current_user_id: CurrentUserDep,
    service: FriendshipServiceDep,
):
    report = await service.check_consistency(current_user_id, friend_id)
    return ConsistencyReportResponse(
        relationship_key=report.relationship_key,
        relationship_exists=report.relationship_exists,
        relationship_status=report.relationship_status,
        initiator_id=report.initiator_id,
        blocked_by=report.blocked_by,
        mirrors=[
            MirrorReportSchema(owner_id=m.owner_id, exists=m.exists, status=m.status, role=m.role)
            for m in report.mirrors
        ],
        conversation_exists=report.conversation_exists,
        conversation_active=report.conversation_active,
        issues=list(report.issues),
        is_consistent=report.is_consistent,
    )


@router.post("/{friend_id}/repair", response_model=RepairResponse)
async def repair_friendship(
    friend_id: str,
    current_user_id: CurrentUserDep,
    service: FriendshipServiceDep,
):
    result = await service.repair(current_user_id, friend_id)
    return RepairResponse(
        relationship_key=result.relationship_key,
        status=result.status,
        writes_applied=result.writes_applied,
        repaired=list(result.repaired),
        nothing_to_repair=result.nothing_to_repair,
    )
