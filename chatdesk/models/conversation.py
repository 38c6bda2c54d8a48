from datetime import datetime
from typing import Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    # client-generated uuid, stable across page loads
    _id: str
    # exactly one of guest_identifier / user_id is set, on insert only
    guest_identifier: Optional[str]
    user_id: Optional[str]
    created_at: datetime
