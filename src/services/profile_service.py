"""Profile lookup service."""

from typing import Any
from uuid import UUID

from src.core.supabase import get_supabase_client


class ProfileService:
    """Service for reading user profiles."""

    def __init__(self) -> None:
        """Initialize profile service with Supabase client."""
        self.client = get_supabase_client()

    async def get_profile_by_user_id(self, user_id: UUID) -> dict[str, Any] | None:
        """Get a profile by auth user ID.

        Args:
            user_id: The auth user ID.

        Returns:
            dict | None: The profile data or None if not found.
        """
        response = (
            self.client.table("profiles")
            .select("*")
            .eq("user_id", str(user_id))
            .limit(1)
            .execute()
        )

        return response.data[0] if response.data else None

    async def get_profile_by_id(self, profile_id: UUID | str) -> dict[str, Any] | None:
        """Get a profile by profile ID.

        Args:
            profile_id: The profile's UUID.

        Returns:
            dict | None: The profile data or None if not found.
        """
        response = (
            self.client.table("profiles")
            .select("*")
            .eq("id", str(profile_id))
            .limit(1)
            .execute()
        )

        return response.data[0] if response.data else None
