"""Row locks that serialize per-user credential changes.

Learn: Under READ COMMITTED, two concurrent logins that each run
"DELETE old tokens; INSERT new token" can interleave and leave two live
refresh tokens (or none). Taking SELECT ... FOR UPDATE on the user row
first makes the second transaction wait until the first commits.
SQLite ignores FOR UPDATE; it serializes writers on its own.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from warden.db.models import User


async def lock_user(db: AsyncSession, user_id: int) -> None:
    """Lock the user's row until the current transaction ends."""
    await db.execute(select(User.id).where(User.id == user_id).with_for_update())
