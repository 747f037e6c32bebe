"""CLI entrypoints for session service operational tasks."""

from __future__ import annotations

import argparse
import asyncio
import json
from collections.abc import Sequence
from uuid import UUID

from app.config import configure_structlog, get_settings
from app.db.session import dispose_engine, get_session_factory
from app.services.device_control import get_device_control_service


async def _run_force_logout(user_id: UUID, admin_id: UUID, reason: str) -> int:
    """Log a user out of every session and device."""
    service = get_device_control_service()
    async with get_session_factory()() as db_session:
        logged_out = await service.force_logout_user(
            db_session, user_id=user_id, admin_id=admin_id, reason=reason
        )
    print(json.dumps({"user_id": str(user_id), "logged_out": logged_out}))
    return 0 if logged_out else 1


async def _run_resolve_conflict(conflict_id: UUID, admin_id: UUID, notes: str) -> int:
    """Mark one device conflict resolved."""
    service = get_device_control_service()
    async with get_session_factory()() as db_session:
        resolution = await service.resolve_device_conflict(
            db_session, conflict_id=conflict_id, admin_id=admin_id, resolution_notes=notes
        )
    print(
        json.dumps(
            {
                "conflict_id": resolution.conflict_id,
                "resolved": resolution.resolved,
                "resolution_notes": resolution.resolution_notes,
            }
        )
    )
    return 0 if resolution.resolved else 1


async def _run_list_conflicts() -> int:
    """Print unresolved device conflicts."""
    service = get_device_control_service()
    async with get_session_factory()() as db_session:
        conflicts = await service.get_pending_device_conflicts(db_session)
    print(
        json.dumps(
            [
                {
                    "id": str(conflict.id),
                    "user_id": str(conflict.user_id),
                    "new_device_id": conflict.new_device_id,
                    "old_device_ids": list(conflict.old_device_ids),
                    "role": conflict.role.value,
                    "timestamp": conflict.timestamp.isoformat(),
                }
                for conflict in conflicts
            ]
        )
    )
    return 0


async def _dispatch(args: argparse.Namespace) -> int:
    """Run the selected command and release pooled connections."""
    try:
        if args.command == "force-logout":
            return await _run_force_logout(args.user_id, args.admin_id, args.reason)
        if args.command == "resolve-conflict":
            return await _run_resolve_conflict(args.conflict_id, args.admin_id, args.notes)
        return await _run_list_conflicts()
    finally:
        await dispose_engine()


def _build_parser() -> argparse.ArgumentParser:
    """Build command-line parser for supported operational commands."""
    parser = argparse.ArgumentParser(prog="python -m app.cli")
    subcommands = parser.add_subparsers(dest="command", required=True)

    force_logout = subcommands.add_parser("force-logout")
    force_logout.add_argument("--user-id", type=UUID, required=True)
    force_logout.add_argument("--admin-id", type=UUID, required=True)
    force_logout.add_argument("--reason", default="Admin action")

    resolve = subcommands.add_parser("resolve-conflict")
    resolve.add_argument("--conflict-id", type=UUID, required=True)
    resolve.add_argument("--admin-id", type=UUID, required=True)
    resolve.add_argument("--notes", required=True)

    subcommands.add_parser("list-conflicts")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run CLI command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    configure_structlog(get_settings())
    return asyncio.run(_dispatch(args))


if __name__ == "__main__":
    raise SystemExit(main())
