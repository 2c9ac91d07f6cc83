"""Command-line entry for pocketcal.

A small CLI over the engine: expand a window of the stored calendar, back the
store up to JSON and restore it, and list upcoming reminders.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime, timedelta
from typing import Optional

from . import _init_logging
from .config_loader import Config, load_config
from .exceptions import PocketCalError
from .lite_logging import configure_lite_logging

logger = logging.getLogger(__name__)

VIEWS = ("day", "week", "month", "grid")


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the pocketcal CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="pocketcal",
        description="pocketcal - personal calendar recurrence engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pocketcal expand --view week                      # This week, grouped by day
  pocketcal expand --start 2025-01-01 --end 2025-02-01 --json
  pocketcal export backup.json                      # Back up the store
  pocketcal import backup.json --replace            # Restore a backup
  pocketcal reminders --days 2                      # Reminders due in the next 2 days
        """,
    )
    parser.add_argument("--config", metavar="PATH", help="Config file (default: ~/.config/pocketcal/config.yaml)")
    parser.add_argument("--store", metavar="PATH", help="Override the definition store path")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    expand = sub.add_parser("expand", help="List occurrences in a window, grouped by date")
    expand.add_argument("--view", choices=VIEWS, default="day", help="Window around --day (default: day)")
    expand.add_argument("--day", metavar="YYYY-MM-DD", help="Day the view is built around (default: today)")
    expand.add_argument("--start", metavar="ISO", help="Explicit window start (overrides --view)")
    expand.add_argument("--end", metavar="ISO", help="Explicit window end (requires --start)")
    expand.add_argument("--zone", help="Zone to group dates in (default: config default_zone)")
    expand.add_argument("--json", action="store_true", help="Print JSON instead of text")

    export = sub.add_parser("export", help="Write all definitions to a JSON backup")
    export.add_argument("path", help="Backup file to write")

    restore = sub.add_parser("import", help="Load definitions from a JSON backup")
    restore.add_argument("path", help="Backup file to read")
    restore.add_argument("--replace", action="store_true", help="Drop existing definitions first")

    reminders = sub.add_parser("reminders", help="List reminders due soon")
    reminders.add_argument("--days", type=int, default=1, help="Look-ahead in days (default: 1)")
    reminders.add_argument("--json", action="store_true", help="Print JSON instead of text")

    return parser


def _resolve_window(args: argparse.Namespace, config: Config) -> tuple[datetime, datetime]:
    from .calendar.wall_clock import parse_wall_clock
    from .calendar.windows import day_window, month_grid_window, month_window, week_window
    from .core.timezone_utils import now_wall

    if args.start:
        start = parse_wall_clock(args.start)
        end = parse_wall_clock(args.end) if args.end else start + timedelta(days=1)
        return start, end

    day = date.fromisoformat(args.day) if args.day else now_wall().date()
    if args.view == "week":
        return week_window(day, config.week_start)
    if args.view == "month":
        return month_window(day)
    if args.view == "grid":
        return month_grid_window(day, config.week_start)
    return day_window(day)


def _cmd_expand(args: argparse.Namespace, config: Config) -> int:
    from .calendar.expander import OccurrenceExpander
    from .calendar.grouping import group_by_date
    from .calendar.wall_clock import format_wall_clock
    from .domain.event_store import JsonFileEventStore

    store = JsonFileEventStore(config.resolved_store_path)
    window_start, window_end = _resolve_window(args, config)
    occurrences = OccurrenceExpander(config).expand(
        store.get_all_definitions(), window_start, window_end
    )
    groups = group_by_date(occurrences, args.zone or config.default_zone)

    if args.json:
        payload = {
            day: [occ.model_dump(mode="json") for occ in items] for day, items in sorted(groups.items())
        }
        print(json.dumps(payload, ensure_ascii=False, indent=2))
        return 0

    print(f"{format_wall_clock(window_start)} .. {format_wall_clock(window_end)}")
    if not groups:
        print("  (no events)")
    for day, items in sorted(groups.items()):
        print(day)
        for occ in items:
            span = f"{occ.start:%H:%M}-{occ.end:%H:%M}"
            print(f"  {span}  {occ.title or '(untitled)'}  [{occ.instance_id}]")
    return 0


def _cmd_export(args: argparse.Namespace, config: Config) -> int:
    from .domain.event_store import JsonFileEventStore, export_definitions

    store = JsonFileEventStore(config.resolved_store_path)
    count = export_definitions(store.get_all_definitions(), args.path)
    print(f"Exported {count} definitions to {args.path}")
    return 0


def _cmd_import(args: argparse.Namespace, config: Config) -> int:
    from .domain.event_store import JsonFileEventStore, import_definitions

    store = JsonFileEventStore(config.resolved_store_path)
    count = store.import_definitions(import_definitions(args.path), replace=args.replace)
    print(f"Imported {count} definitions into {store.path}")
    return 0


def _cmd_reminders(args: argparse.Namespace, config: Config) -> int:
    from .calendar.expander import OccurrenceExpander
    from .calendar.wall_clock import format_wall_clock
    from .core.timezone_utils import now_wall
    from .domain.event_store import JsonFileEventStore
    from .domain.reminders import REMINDER_OPTIONS, plan_reminders

    store = JsonFileEventStore(config.resolved_store_path)
    now = now_wall()
    # Reach past the look-ahead by the longest selectable lead time.
    longest = max(minutes for _, minutes in REMINDER_OPTIONS)
    occurrences = OccurrenceExpander(config).expand(
        store.get_all_definitions(), now, now + timedelta(days=max(args.days, 0), minutes=longest)
    )
    horizon = now + timedelta(days=max(args.days, 0))
    plans = [p for p in plan_reminders(occurrences, now) if p.trigger_at < horizon]

    if args.json:
        print(json.dumps([p.to_dict() for p in plans], ensure_ascii=False, indent=2))
        return 0
    if not plans:
        print("No reminders due")
    for plan in plans:
        print(f"{format_wall_clock(plan.trigger_at)}  {plan.body}  [{plan.notification_id}]")
    return 0


COMMANDS = {
    "expand": _cmd_expand,
    "export": _cmd_export,
    "import": _cmd_import,
    "reminders": _cmd_reminders,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Run the pocketcal CLI and return the exit status."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        print(f"pocketcal: cannot load config: {exc}", file=sys.stderr)
        return 2
    if args.store:
        config.store_path = args.store

    _init_logging("DEBUG" if args.debug else config.log_level)
    configure_lite_logging(debug_mode=args.debug)

    try:
        return COMMANDS[args.command](args, config)
    except PocketCalError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"pocketcal: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"pocketcal: invalid argument: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
