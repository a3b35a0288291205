from datetime import datetime
from typing import Dict, List, Optional, TypedDict

from wardrobe_chat.models.message import MessageDocument


class ConversationDocument(TypedDict, total=False):
    _id: str
    # sorted pair of user ids
    participants: List[str]
    # "<a>:<b>" of the sorted pair, unique index
    participants_key: str
    messages: List[MessageDocument]
    related_item: Optional[str]
    is_active: bool
    created_at: datetime
    last_message_at: datetime
    # per-user unread counters (user_id -> count)
    unread_counts: Dict[str, int]
    # user_id -> last typing time
    typing_users: Dict[str, datetime]


def participants_key(user_a: str, user_b: str) -> str:
    return ":".join(sorted([user_a, user_b]))
