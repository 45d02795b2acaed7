"""Profile service — storage calls for user-owned profile data.

Learn: Service layer separates storage logic from HTTP routing. Every
ProfileService is built on the AsyncSession of ONE request's security
scope (AuthResult.session), so Postgres RLS sees the right owner id for
every statement it runs. The service never picks a connection itself.

profile_exists() is the one exception: the gateway calls it before a
scope exists, to decide the bootstrap case. It binds the owner id
transaction-locally on a short-lived connection and rolls back, so the
binding can't outlive the probe.
"""

from typing import Optional

from sqlalchemy import delete, select, text, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from ownergate.db.models import UserPreferences, UserProfile, UserStats
from ownergate.gateway.context import SCOPE_SETTING


class ProfileConflict(Exception):
    """Raised when a profile for the owner already exists."""


class ProfileService:
    """Profile, stats and preferences for the scope's owner."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Profiles ───────────────────────────────────────

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        result = await self.db.execute(
            select(UserProfile).where(UserProfile.user_id == user_id)
        )
        return result.scalars().first()

    async def create_profile(
        self,
        user_id: str,
        display_name: str,
        email: Optional[str] = None,
        wallet_address: Optional[str] = None,
        bio: Optional[str] = None,
    ) -> UserProfile:
        """Create the profile plus default stats and preferences.

        Learn: Two bootstrap creates for the same owner can both pass the
        gateway (neither sees an existing row). The UNIQUE constraint on
        user_id settles it: first commit wins, the loser gets
        ProfileConflict.
        """
        profile = UserProfile(
            user_id=user_id,
            display_name=display_name,
            email=email,
            wallet_address=wallet_address,
            bio=bio,
        )
        self.db.add(profile)
        self.db.add(UserStats(user_id=user_id))
        self.db.add(UserPreferences(user_id=user_id))
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ProfileConflict(user_id) from e
        return profile

    async def update_profile(self, user_id: str, **fields) -> Optional[UserProfile]:
        profile = await self.get_profile(user_id)
        if profile is None:
            return None
        for name, value in fields.items():
            if value is not None:
                setattr(profile, name, value)
        await self.db.commit()
        return profile

    async def delete_profile(self, user_id: str) -> bool:
        """Delete the profile. Stats and preferences go with it (ON DELETE CASCADE)."""
        result = await self.db.execute(
            delete(UserProfile).where(UserProfile.user_id == user_id)
        )
        await self.db.commit()
        return result.rowcount > 0

    # ─── Stats ──────────────────────────────────────────

    async def add_points(self, user_id: str, points: int) -> int:
        """Atomically bump total_points. Returns the new total."""
        result = await self.db.execute(
            update(UserStats)
            .where(UserStats.user_id == user_id)
            .values(total_points=UserStats.total_points + points)
            .returning(UserStats.total_points)
        )
        total = result.scalar_one_or_none()
        await self.db.commit()
        if total is None:
            raise LookupError(f"no stats row for {user_id}")
        return total


_EXISTS_SQL = text("SELECT 1 FROM user_profiles WHERE user_id = :owner_id")
_LOCAL_BIND_SQL = text("SELECT set_config(:setting, :owner_id, true)")


def make_profile_probe(engine: AsyncEngine):
    """Build the gateway's existence probe for user_profiles."""

    async def profile_exists(owner_id: str) -> bool:
        async with engine.connect() as conn:
            try:
                await conn.execute(
                    _LOCAL_BIND_SQL, {"setting": SCOPE_SETTING, "owner_id": owner_id}
                )
                result = await conn.execute(_EXISTS_SQL, {"owner_id": owner_id})
                return result.first() is not None
            finally:
                await conn.rollback()

    return profile_exists
