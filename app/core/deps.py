"""
Dependency Injection

FastAPI dependencies for routes.
"""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from app.friendship.service import FriendshipService, build_friendship_service


@lru_cache()
def get_friendship_service() -> FriendshipService:
    """Process-wide service; it holds no per-request state"""
    return build_friendship_service()


FriendshipServiceDep = Annotated[FriendshipService, Depends(get_friendship_service)]
