from typing import List, Optional

from pydantic import BaseModel, Field

from app.friendship.state_machine import ArchiveReason


class SendFriendRequestPayload(BaseModel):
    # Email address or user id of the person to befriend
    target: str = Field(min_length=1, max_length=255)


class SendFriendRequestResponse(BaseModel):
    success: bool = True
    relationship_key: str
    target_user_id: str
    target_display_name: str


class SuccessResponse(BaseModel):
    success: bool = True


class RelationshipItem(BaseModel):
    friend_id: str
    relationship_key: str
    status: str
    role: str


class RelationshipListResponse(BaseModel):
    items: List[RelationshipItem]


class MirrorReportSchema(BaseModel):
    owner_id: str
    exists: bool
    status: Optional[str] = None
    role: Optional[str] = None


class ConsistencyReportResponse(BaseModel):
    relationship_key: str
    relationship_exists: bool
    relationship_status: Optional[str] = None
    initiator_id: Optional[str] = None
    blocked_by: Optional[str] = None
    mirrors: List[MirrorReportSchema]
    conversation_exists: bool
    conversation_active: Optional[bool] = None
    issues: List[str]
    is_consistent: bool


class RepairResponse(BaseModel):
    success: bool = True
    relationship_key: str
    status: Optional[str] = None
    writes_applied: int
    repaired: List[str]
    nothing_to_repair: bool


class ArchiveContentPayload(BaseModel):
    conversation_id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    reason: ArchiveReason = ArchiveReason.MANUAL


class ArchiveContentResponse(BaseModel):
    success: bool = True
    archived_count: int
