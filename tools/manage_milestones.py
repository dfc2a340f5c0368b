from __future__ import annotations

import argparse
import os
import sys
from datetime import datetime

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from database import db  # noqa: E402
from database.sources import to_notification  # noqa: E402
from monitor.models import ALL_GROUPS  # noqa: E402

GROUP_CHOICES = [g.value for g in ALL_GROUPS]


def _cmd_list(args: argparse.Namespace) -> int:
    rows = db.list_active_milestones(args.group)
    print(f"group={args.group} active_milestones={len(rows)}")
    for row in rows:
        print(f"- id={row.id} value={row.milestone_value:g}x label={row.milestone_label} notes={row.notes or ''}")
    return 0


def _cmd_add(args: argparse.Namespace) -> int:
    row = db.create_milestone_config(
        args.group,
        args.value,
        args.label or f"{args.value:g}x",
        created_by=args.created_by,
        notes=args.notes,
    )
    print(f"created id={row.id} group={row.group_name} value={row.milestone_value:g} label={row.milestone_label}")
    return 0


def _cmd_deactivate(args: argparse.Namespace) -> int:
    if not db.deactivate_milestone_config(args.id):
        print(f"milestone config {args.id} not found")
        return 1
    print(f"deactivated id={args.id}")
    return 0


def _cmd_add_token(args: argparse.Namespace) -> int:
    called_at = datetime.fromisoformat(args.called_at) if args.called_at else None
    row = db.add_token(args.group, args.address, args.symbol, args.initial_cap, called_at)
    print(f"added token id={row.id} group={row.group_name} symbol={row.symbol} initial_cap={row.initial_market_cap_usd:,.0f}")
    return 0


def _cmd_history(args: argparse.Namespace) -> int:
    notifications = [to_notification(row) for row in db.get_notifications_for_token(args.token_id)]
    print(f"token_id={args.token_id} notifications={len(notifications)}")
    for item in notifications:
        print(
            f"- {item.notified_at_utc.isoformat()} group={item.group_name.value} "
            f"milestone={item.milestone_label} ({item.milestone_value:g}x)"
        )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage milestone configs, called tokens and alert history.")
    sub = parser.add_subparsers(dest="command", required=True)

    p_list = sub.add_parser("list", help="List active milestones for a group")
    p_list.add_argument("group", choices=GROUP_CHOICES)
    p_list.set_defaults(func=_cmd_list)

    p_add = sub.add_parser("add", help="Create a milestone config")
    p_add.add_argument("group", choices=GROUP_CHOICES)
    p_add.add_argument("value", type=float, help="Multiple of initial market cap, e.g. 2 for 2x")
    p_add.add_argument("--label", default="")
    p_add.add_argument("--created-by", default=None)
    p_add.add_argument("--notes", default=None)
    p_add.set_defaults(func=_cmd_add)

    p_off = sub.add_parser("deactivate", help="Deactivate a milestone config")
    p_off.add_argument("id", type=int)
    p_off.set_defaults(func=_cmd_deactivate)

    p_token = sub.add_parser("add-token", help="Register a called token")
    p_token.add_argument("group", choices=GROUP_CHOICES)
    p_token.add_argument("address")
    p_token.add_argument("symbol")
    p_token.add_argument("initial_cap", type=float)
    p_token.add_argument("--called-at", default="", help="ISO timestamp, defaults to now (UTC)")
    p_token.set_defaults(func=_cmd_add_token)

    p_hist = sub.add_parser("history", help="Show sent milestone alerts for a token")
    p_hist.add_argument("token_id", type=int)
    p_hist.set_defaults(func=_cmd_history)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    db.init_db()
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
