import argparse
import asyncio
import os
import sys

# Add project root to sys.path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.core.logging import setup_logging
from app.friendship.notifier import NullNotifier
from app.friendship.service import build_friendship_service
from app.infra.db import close_db_connection


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check or repair the mirror and chat records derived from friendships."
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--user", help="Repair every relationship this user takes part in")
    target.add_argument("--user-a", help="First user of a single pair (requires --user-b)")
    parser.add_argument("--user-b", help="Second user of a single pair")
    parser.add_argument(
        "--check-only",
        action="store_true",
        help="Report inconsistencies without writing (pair mode only)",
    )
    args = parser.parse_args(argv)
    if args.user_a and not args.user_b:
        parser.error("--user-a requires --user-b")
    if args.user and args.check_only:
        parser.error("--check-only works with --user-a/--user-b")
    return args


async def run(args: argparse.Namespace) -> int:
    print(f"Connecting to database: {settings.database_url}")
    # Repairs never notify anyone
    service = build_friendship_service(notifier=NullNotifier())
    try:
        if args.user:
            results = await service.repair_user(args.user)
            print("-" * 65)
            print(f"{'RELATIONSHIP':<40} | {'STATUS':<10} | {'WRITES':<8}")
            print("-" * 65)
            for result in results:
                print(f"{result.relationship_key:<40} | {result.status or '-':<10} | {result.writes_applied:<8}")
                for issue in result.repaired:
                    print(f"    - {issue}")
            print("-" * 65)
            print(f"{len(results)} relationship(s) checked")
            return 0

        if args.check_only:
            report = await service.check_consistency(args.user_a, args.user_b)
            print(f"Relationship {report.relationship_key}: {report.relationship_status or 'absent'}")
            for mirror in report.mirrors:
                state = f"{mirror.status}/{mirror.role}" if mirror.exists else "missing"
                print(f"  mirror {mirror.owner_id}: {state}")
            print(f"  conversation: {'active' if report.conversation_active else 'inactive' if report.conversation_exists else 'absent'}")
            for issue in report.issues:
                print(f"  ! {issue}")
            return 0 if report.is_consistent else 1

        result = await service.repair(args.user_a, args.user_b)
        if result.nothing_to_repair:
            print(f"{result.relationship_key}: nothing to repair")
        else:
            print(f"{result.relationship_key}: applied {result.writes_applied} write(s)")
            for issue in result.repaired:
                print(f"    - {issue}")
        return 0
    finally:
        await close_db_connection()


def main(argv=None) -> int:
    setup_logging()
    return asyncio.run(run(parse_args(argv)))


if __name__ == "__main__":
    sys.exit(main())
