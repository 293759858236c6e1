"""Reference-data seeding — roles, permissions and their grants.

Learn: Roles and permissions are static from the auth flows' point of
view (register only *reads* a role). This module is how they get into
the database in the first place: idempotent get-or-create, so running
it twice changes nothing.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from warden.db.models import Permission, Role

logger = structlog.get_logger()

DEFAULT_GRANTS: dict[str, list[str]] = {
    "administrator": [
        "users.read",
        "users.write",
        "agents.read",
        "agents.write",
        "content.read",
        "content.generate",
    ],
    "user": ["users.read", "agents.read", "content.read", "content.generate"],
}


def parse_grant(grant: str) -> tuple[str, list[str]]:
    """Parse "role:perm1,perm2" (permissions optional)."""
    role, _, perms = grant.partition(":")
    role = role.strip()
    if not role:
        raise ValueError(f"Invalid grant {grant!r}: missing role name")
    return role, [p.strip() for p in perms.split(",") if p.strip()]


async def seed_roles(db: AsyncSession, grants: dict[str, list[str]]) -> list[Role]:
    """Create missing roles/permissions and grant permissions to roles."""
    wanted_perms = sorted({p for perms in grants.values() for p in perms})
    result = await db.execute(select(Permission).where(Permission.name.in_(wanted_perms)))
    permissions = {p.name: p for p in result.scalars().all()}
    for name in wanted_perms:
        if name not in permissions:
            permissions[name] = Permission(name=name)
            db.add(permissions[name])

    result = await db.execute(select(Role).where(Role.name.in_(list(grants))))
    roles = {r.name: r for r in result.scalars().all()}

    for role_name, perm_names in grants.items():
        role = roles.get(role_name)
        if role is None:
            role = Role(name=role_name, permissions=[])
            roles[role_name] = role
            db.add(role)
        for perm_name in perm_names:
            perm = permissions[perm_name]
            if perm not in role.permissions:
                role.permissions.append(perm)

    await db.commit()
    logger.info("seed.roles", roles=sorted(roles), permissions=len(permissions))
    return [roles[name] for name in grants]
