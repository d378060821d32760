"""
API Router
"""

from fastapi import APIRouter, Depends

from app.core.token import security_scheme
from app.friendship.api import router as friendship_router

api_router = APIRouter()

# Every friendship route needs a bearer token
api_router.include_router(friendship_router, dependencies=[Depends(security_scheme)])
