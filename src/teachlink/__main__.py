"""TeachLink client command line.

Drives the session and entitlement core against a backend from a terminal,
using the encrypted file store under ~/.teachlink. Handy for checking a
backend deployment without a device.
"""

import argparse
import asyncio
import getpass
import logging
import sys

from teachlink.client import TeachLinkClient
from teachlink.config import Settings
from teachlink.errors import TeachLinkError, user_message
from teachlink.logging_setup import setup_logging
from teachlink.payments.catalogue import find_plan, format_price

logger = logging.getLogger(__name__)


async def _status(client: TeachLinkClient, args: argparse.Namespace) -> int:
    session = await client.session.restore_session()
    if session is None:
        print("Signed out")
        remembered = await client.session.get_remembered_email()
        if remembered:
            print(f"Remembered email: {remembered}")
        return 1
    print(f"Signed in as {session.user.name or session.user.email} ({session.user.id})")
    return 0


async def _login(client: TeachLinkClient, args: argparse.Namespace) -> int:
    email = args.email or await client.session.get_remembered_email()
    if not email:
        email = input("Email: ")
    password = args.password or getpass.getpass("Password: ")
    session = await client.session.login(email, password, remember_me=args.remember)
    print(f"Signed in as {session.user.name or session.user.email}")
    return 0


async def _logout(client: TeachLinkClient, args: argparse.Namespace) -> int:
    await client.session.logout()
    print("Signed out")
    return 0


async def _refresh(client: TeachLinkClient, args: argparse.Namespace) -> int:
    session = await client.session.refresh_session()
    print(f"Session refreshed, expires at {session.tokens.expires_at}")
    return 0


async def _tier(client: TeachLinkClient, args: argparse.Namespace) -> int:
    tier = await client.entitlements.get_subscription_tier()
    print(tier.value)
    return 0


async def _history(client: TeachLinkClient, args: argparse.Namespace) -> int:
    records = await client.entitlements.get_purchase_history()
    if not records:
        print("No purchases")
    for record in records:
        plan = find_plan(record.product_id)
        name = plan.name if plan else record.product_id
        print(
            f"{record.purchased_at:%Y-%m-%d}  {name:<20} "
            f"{format_price(record.amount, record.currency):>10}  {record.status.value}"
        )
    return 0


async def _restore(client: TeachLinkClient, args: argparse.Namespace) -> int:
    result = await client.entitlements.restore_purchases()
    print(result.message)
    print(f"Tier: {result.tier.value}")
    return 0


COMMANDS = {
    "status": _status,
    "login": _login,
    "logout": _logout,
    "refresh": _refresh,
    "tier": _tier,
    "history": _history,
    "restore": _restore,
}


async def _run(settings: Settings, args: argparse.Namespace) -> int:
    async with TeachLinkClient.from_settings(settings) as client:
        try:
            return await COMMANDS[args.command](client, args)
        except TeachLinkError as e:
            logger.debug("Command %s failed", args.command, exc_info=True)
            message = user_message(e)
            if message:
                print(message, file=sys.stderr)
            return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="teachlink", description="TeachLink client core")
    parser.add_argument("--api", help="Backend base URL (overrides settings)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("status", help="Restore and show the current session")
    login = sub.add_parser("login", help="Sign in with email and password")
    login.add_argument("--email")
    login.add_argument("--password", help="Prompted for when omitted")
    login.add_argument("--remember", action="store_true", help="Remember the email")
    sub.add_parser("logout", help="Sign out (keeps remember-me and biometric settings)")
    sub.add_parser("refresh", help="Force a silent token refresh")
    sub.add_parser("tier", help="Show the current subscription tier")
    sub.add_parser("history", help="List local purchase history")
    sub.add_parser("restore", help="Restore purchases from the local ledger")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = Settings.load()
    if args.api:
        settings = settings.model_copy(update={"api_base_url": args.api})
    setup_logging(level="DEBUG" if args.verbose else settings.log_level)

    try:
        return asyncio.run(_run(settings, args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
