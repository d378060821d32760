from app.models.base import Base
from app.models.chat import Chat
from app.models.friendship import Friendship, FriendshipEvent, UserFriendship
from app.models.message import ChatMessage
from app.models.user import User

__all__ = [
    "Base",
    "User",
    "Friendship",
    "UserFriendship",
    "FriendshipEvent",
    "Chat",
    "ChatMessage",
]
