"""Warden CLI — operational commands against the credential store.

Usage:
    warden create-schema                                  # Create all tables (dev/test)
    warden seed-roles                                     # Default roles + permissions
    warden seed-roles -g administrator:users.read,users.write -g user
    warden prune                                          # Delete expired token rows once

Production schemas are managed with Alembic (alembic upgrade head);
create-schema is a shortcut for local databases.
"""

from __future__ import annotations

import asyncio
import sys

import click

from warden import __version__

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from a synchronous Click handler."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="warden")
def main():
    """Warden — manage the authentication credential store."""


@main.command("create-schema")
def create_schema():
    """Create all tables that don't exist yet."""
    _run(_create_schema_impl())
    click.secho("Schema created", fg="green")


async def _create_schema_impl():
    from warden.db.engine import engine
    from warden.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()


@main.command("seed-roles")
@click.option(
    "--grant",
    "-g",
    "grants",
    multiple=True,
    help='Role and permissions as "role:perm1,perm2" (repeatable). '
    "Defaults to the built-in administrator/user roles.",
)
def seed_roles_cmd(grants: tuple[str, ...]):
    """Create roles and permissions (idempotent)."""
    from warden.services.seed import DEFAULT_GRANTS, parse_grant

    if grants:
        try:
            parsed = dict(parse_grant(g) for g in grants)
        except ValueError as e:
            click.secho(f"Error: {e}", fg="red", err=True)
            sys.exit(1)
    else:
        parsed = DEFAULT_GRANTS

    roles = _run(_seed_impl(parsed))
    for name, perms in roles:
        click.echo(f"{name:<20} {', '.join(perms) or '(none)'}")


async def _seed_impl(grants: dict[str, list[str]]) -> list[tuple[str, list[str]]]:
    from warden.db.engine import async_session_factory, engine
    from warden.services.seed import seed_roles

    async with async_session_factory() as db:
        roles = await seed_roles(db, grants)
        summary = [(r.name, [p.name for p in r.permissions]) for r in roles]
    await engine.dispose()
    return summary


@main.command()
def prune():
    """Delete expired denylist, refresh, two-factor and reset rows."""
    result = _run(_prune_impl())
    click.echo(
        f"Pruned {result.total} rows "
        f"(revoked={result.revoked_tokens}, refresh={result.refresh_tokens}, "
        f"two_factor={result.two_factor_tokens}, reset={result.password_reset_tokens})"
    )


async def _prune_impl():
    from warden.config import get_settings
    from warden.db.engine import async_session_factory, engine
    from warden.services.pruner import TokenPruner

    try:
        return await TokenPruner(get_settings(), async_session_factory).prune_once()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    main()
