"""Profile model type definitions for database operations."""

from datetime import datetime
from typing import TypedDict
from uuid import UUID


class Profile(TypedDict):
    """Profile table row representation.

    One profile per auth user; orders are owned by profiles.
    """

    id: UUID
    user_id: UUID
    user_email: str | None
    name: str | None
    mobile_number: str | None
    created_at: datetime
