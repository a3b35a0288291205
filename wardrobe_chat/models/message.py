from datetime import datetime
from typing import Literal, Optional, TypedDict


MessageType = Literal["text", "system", "request"]
MessageStatus = Literal["sending", "sent", "read"]


class ItemInfoDocument(TypedDict, total=False):
    item_id: str
    item_name: Optional[str]
    item_image: Optional[str]


class MessageDocument(TypedDict, total=False):
    _id: str
    sender: Optional[str]
    content: str
    message_type: MessageType
    timestamp: datetime
    # delivery states
    status: MessageStatus
    is_read: bool
    read_at: Optional[datetime]
    # client ack, echoed back only
    temp_id: Optional[str]
    # request messages only
    item_info: Optional[ItemInfoDocument]
