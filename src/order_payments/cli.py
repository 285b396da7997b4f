"""Order payments command line interface.

Provides operational tools for:
- Recording commissions the payment pipeline could not
- Settings administration
- Ambassador application review
- Order reporting
- Schema creation for development databases

Usage:
    python -m order_payments.cli sweep-commissions
    python -m order_payments.cli settings-list
    python -m order_payments.cli settings-set commission_rate_bp 700 --user ops@example.com
    python -m order_payments.cli settings-reset commission_rate_bp
    python -m order_payments.cli orders-by-status PAID --limit 20
    python -m order_payments.cli ambassador-approve <application-id> --user ops@example.com
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_payments.config import configure_logging, get_settings
from order_payments.database import create_schema, get_engine, make_session_factory
from order_payments.models import AmbassadorApplication, ApplicationStatus, OrderStatus, User
from order_payments.services.ambassadors import AmbassadorError, AmbassadorService
from order_payments.services.commission import CommissionEngine
from order_payments.services.order_service import OrderService
from order_payments.services.settings_store import (
    SettingNotFoundError,
    SettingsStore,
    SettingValueError,
)

Handler = Callable[[argparse.Namespace, async_sessionmaker[AsyncSession]], Awaitable[int]]


def format_cents(cents: int) -> str:
    """Integer cents as 1,234.56, without going through float."""
    major, minor = divmod(abs(cents), 100)
    sign = "-" if cents < 0 else ""
    return f"{sign}{major:,}.{minor:02d}"


class OrderPaymentsCli:
    """Order payments operational CLI."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m order_payments.cli",
            description="Order payments operational tools",
        )
        parser.add_argument(
            "--database-url",
            type=str,
            help="Database URL (default: $DATABASE_URL)",
        )
        parser.add_argument(
            "--log-level",
            type=str,
            default=None,
            help="Log level (default: $LOG_LEVEL)",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # sweep-commissions command
        sweep = subparsers.add_parser(
            "sweep-commissions",
            help="Record commissions for paid referred orders that have none",
        )
        sweep.add_argument(
            "--dry-run",
            action="store_true",
            help="List orphaned orders without recording anything",
        )
        sweep.add_argument(
            "--json",
            action="store_true",
            help="Print the result as JSON",
        )

        # settings-list command
        subparsers.add_parser("settings-list", help="Show all business settings")

        # settings-set command
        settings_set = subparsers.add_parser("settings-set", help="Change a business setting")
        settings_set.add_argument("key", type=str, help="Setting key")
        settings_set.add_argument("value", type=str, help="New value")
        settings_set.add_argument(
            "--user",
            type=str,
            default="cli",
            help="Recorded as updated_by (default: cli)",
        )

        # settings-reset command
        settings_reset = subparsers.add_parser(
            "settings-reset", help="Restore a setting to its default"
        )
        settings_reset.add_argument("key", type=str, help="Setting key")
        settings_reset.add_argument("--user", type=str, default="cli")

        # orders-by-status command
        orders = subparsers.add_parser("orders-by-status", help="List orders in a status")
        orders.add_argument(
            "status",
            type=str.upper,
            choices=[s.value for s in OrderStatus],
            help="Order status",
        )
        orders.add_argument("--limit", type=int, default=50)
        orders.add_argument("--offset", type=int, default=0)

        # ambassador-applications command
        subparsers.add_parser(
            "ambassador-applications", help="List ambassador applications awaiting review"
        )

        # ambassador-approve command
        approve = subparsers.add_parser(
            "ambassador-approve", help="Approve an application and issue a referral code"
        )
        approve.add_argument("application_id", type=UUID, help="Application id")
        approve.add_argument("--user", type=str, default="cli", help="Recorded as reviewer")

        # ambassador-reject command
        reject = subparsers.add_parser(
            "ambassador-reject",
            help="Reject an application, or revoke an approved ambassador",
        )
        reject.add_argument("application_id", type=UUID, help="Application id")
        reject.add_argument("--reason", type=str, default=None)
        reject.add_argument("--user", type=str, default="cli", help="Recorded as reviewer")

        # init-db command
        subparsers.add_parser("init-db", help="Create tables (development databases only)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 1

        configure_logging(parsed.log_level or get_settings().log_level)

        # Dispatch to command handler
        handlers: dict[str, Handler] = {
            "sweep-commissions": self._cmd_sweep_commissions,
            "settings-list": self._cmd_settings_list,
            "settings-set": self._cmd_settings_set,
            "settings-reset": self._cmd_settings_reset,
            "orders-by-status": self._cmd_orders_by_status,
            "ambassador-applications": self._cmd_ambassador_applications,
            "ambassador-approve": self._cmd_ambassador_approve,
            "ambassador-reject": self._cmd_ambassador_reject,
            "init-db": self._cmd_init_db,
        }

        handler = handlers.get(parsed.command)
        if handler is None:
            print(f"Unknown command: {parsed.command}", file=sys.stderr)
            return 1

        return asyncio.run(self._with_database(handler, parsed))

    async def _with_database(self, handler: Handler, args: argparse.Namespace) -> int:
        engine = get_engine(args.database_url)
        try:
            if args.command == "init-db":
                await create_schema(engine)
            return await handler(args, make_session_factory(engine))
        finally:
            await engine.dispose()

    async def _cmd_sweep_commissions(
        self, args: argparse.Namespace, factory: async_sessionmaker[AsyncSession]
    ) -> int:
        """Record missing commissions."""
        engine = CommissionEngine(SettingsStore(factory))
        async with factory() as session:
            if args.dry_run:
                orphans = await engine.find_orphaned_referrals(session)
                print(f"Orphaned referred orders: {len(orphans)}")
                for order in orphans:
                    print(f"  {order.order_number}  {order.status:<10} code={order.referral_code}")
                return 0

            result = await engine.sweep_orphaned_commissions(session)

        if args.json:
            print(
                json.dumps(
                    {
                        "orders_examined": result.orders_examined,
                        "commissions_recorded": result.commissions_recorded,
                        "orders_failed": result.orders_failed,
                        "errors": result.errors,
                    },
                    indent=2,
                )
            )
        else:
            print("Commission Sweep")
            print("=" * 40)
            print(f"  Examined: {result.orders_examined}")
            print(f"  Recorded: {result.commissions_recorded}")
            print(f"  Failed:   {result.orders_failed}")
            for error in result.errors:
                print(f"    - {error['order_number']}: {error['error']}")
        return 0 if result.success else 2

    async def _cmd_settings_list(
        self, args: argparse.Namespace, factory: async_sessionmaker[AsyncSession]
    ) -> int:
        """Show settings."""
        store = SettingsStore(factory)
        entries = await store.list_all()
        if store.degraded:
            print("WARNING: database unavailable, showing defaults", file=sys.stderr)
        for entry in entries:
            marker = "" if entry.is_default else "  (changed)"
            print(f"{entry.key:<28} {entry.value:>10}{marker}")
        return 0

    async def _cmd_settings_set(
        self, args: argparse.Namespace, factory: async_sessionmaker[AsyncSession]
    ) -> int:
        """Change a setting."""
        try:
            value = await SettingsStore(factory).update(args.key, args.value, updated_by=args.user)
        except SettingValueError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"{args.key} = {value}")
        return 0

    async def _cmd_settings_reset(
        self, args: argparse.Namespace, factory: async_sessionmaker[AsyncSession]
    ) -> int:
        """Restore a default."""
        try:
            value = await SettingsStore(factory).reset(args.key, updated_by=args.user)
        except SettingNotFoundError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        print(f"{args.key} = {value} (default)")
        return 0

    async def _cmd_orders_by_status(
        self, args: argparse.Namespace, factory: async_sessionmaker[AsyncSession]
    ) -> int:
        """List orders."""
        async with factory() as session:
            service = OrderService(session, SettingsStore(factory))
            orders = await service.orders_by_status(args.status, args.limit, args.offset)

        if not orders:
            print(f"No {args.status} orders")
            return 0

        print(f"{'Order':<20} {'Reference':<32} {'Total':>12}  Referral")
        for order in orders:
            print(
                f"{order.order_number:<20} {order.transaction_ref:<32} "
                f"{format_cents(order.total_cents):>12}  {order.referral_code or '-'}"
            )
        return 0

    async def _cmd_ambassador_applications(
        self, args: argparse.Namespace, factory: async_sessionmaker[AsyncSession]
    ) -> int:
        """List pending applications."""
        async with factory() as session:
            rows = (
                await session.execute(
                    select(AmbassadorApplication, User)
                    .join(User, User.id == AmbassadorApplication.user_id)
                    .where(AmbassadorApplication.status == ApplicationStatus.PENDING.value)
                    .order_by(AmbassadorApplication.created_at)
                )
            ).all()

        if not rows:
            print("No pending applications")
            return 0
        for application, user in rows:
            print(f"{application.id}  {user.email or '-':<32} {user.name or '-'}")
        return 0

    async def _cmd_ambassador_approve(
        self, args: argparse.Namespace, factory: async_sessionmaker[AsyncSession]
    ) -> int:
        """Approve an application."""
        async with factory() as session:
            try:
                user = await AmbassadorService(session).approve(
                    args.application_id, reviewed_by=args.user
                )
            except AmbassadorError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1
            print(f"Approved {user.email or user.id}: code {user.ambassador_code}")
        return 0

    async def _cmd_ambassador_reject(
        self, args: argparse.Namespace, factory: async_sessionmaker[AsyncSession]
    ) -> int:
        """Reject or revoke."""
        async with factory() as session:
            try:
                application = await AmbassadorService(session).reject(
                    args.application_id, reviewed_by=args.user, reason=args.reason
                )
            except AmbassadorError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1
            print(f"Application {application.id} is now {application.status}")
        return 0

    async def _cmd_init_db(
        self, args: argparse.Namespace, factory: async_sessionmaker[AsyncSession]
    ) -> int:
        """Create tables and default settings."""
        store = SettingsStore(factory)
        await store.init()
        if store.degraded:
            print("Error: could not write default settings", file=sys.stderr)
            return 1
        print("Schema created")
        return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    return OrderPaymentsCli().run(argv)


if __name__ == "__main__":
    sys.exit(main())
