from datetime import datetime
from typing import Literal, Optional, TypedDict


SenderRoleValue = Literal["guest", "user", "admin"]


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    content: str
    sender_role: SenderRoleValue
    # absent for guests
    sender_id: Optional[str]
    created_at: datetime
    # flipped only by admin acknowledgement
    is_read: bool
