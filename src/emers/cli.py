#!/usr/bin/env python3
"""Command-line interface for the event detection pipeline."""

from __future__ import annotations

import argparse
import datetime as dt
import logging
import sys


def parse_date(date_str: str) -> dt.date:
    """Parse date string to date."""
    return dt.datetime.strptime(date_str, "%Y-%m-%d").date()


def _setup(args: argparse.Namespace):
    """Load the runtime configuration and configure logging.

    :returns: The EmersConfig, or None after printing a configuration error.
    """
    from emers.commands import load_emers_config
    from emers.exceptions import ConfigError

    try:
        config = load_emers_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return None

    level = "DEBUG" if args.verbose else config.log_level
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def _open_database(config):
    from emers.exceptions import StorageError
    from emers.storage import EventDatabase

    try:
        return EventDatabase.from_config(config)
    except StorageError as e:
        print(f"Database error: {e}")
        return None


def _print_events(events) -> None:
    if not events:
        print("No events.")
        return
    print(f"{'ID':>5}  {'Date':10}  {'Symbol':8}  {'Type':22}  {'Impact':>6}  Description")
    print("-" * 90)
    for event in events:
        print(
            f"{event.id:>5}  {event.date.isoformat():10}  {event.symbol or '-':8}  "
            f"{event.type.value:22}  {event.impact_score:>+6}  {event.description[:40]}"
        )


def cmd_detect(args: argparse.Namespace) -> int:
    """Fetch prices and news and detect events."""
    from emers.commands import load_detect_config
    from emers.data import resolve_news_fetcher, resolve_price_fetcher
    from emers.exceptions import ConfigError, DataSourceError, StorageError
    from emers.pipeline import EventPipeline

    config = _setup(args)
    if config is None:
        return 1
    try:
        detect_config = load_detect_config(args.run_config)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    print("=" * 60)
    print("DETECT EVENTS")
    print("=" * 60)
    print(f"Symbols:     {', '.join(str(s) for s in detect_config.symbols)}")
    print(f"Date Range:  {detect_config.date_range.start} to {detect_config.date_range.end}")
    print(f"Prices:      {detect_config.price_source}")
    print(f"News:        {detect_config.news_source or '-'}")
    print(f"Database:    {config.event_db_path}")

    price_params = dict(detect_config.price_params)
    news_params = dict(detect_config.news_params)
    if config.tiingo_api_key:
        price_params.setdefault("api_key", config.tiingo_api_key)
        news_params.setdefault("api_key", config.tiingo_api_key)

    try:
        price_fetcher = resolve_price_fetcher(detect_config.price_source, price_params)
        news_fetcher = (
            resolve_news_fetcher(detect_config.news_source, news_params)
            if detect_config.news_source
            else None
        )
    except DataSourceError as e:
        print(f"Data source error: {e}")
        return 1

    try:
        pipeline = EventPipeline.from_config(config)
    except StorageError as e:
        print(f"Database error: {e}")
        return 1

    with pipeline:
        try:
            result = pipeline.run(
                price_fetcher,
                news_fetcher,
                detect_config.symbols,
                detect_config.date_range,
            )
        except StorageError as e:
            print(f"Failed to store events: {e}")
            return 1

    print("\nRESULTS")
    print("-" * 60)
    print(f"Detected:    {len(result.detected)}")
    print(f"New:         {result.append.appended}")
    print(f"Updated:     {result.append.updated}")
    print(f"Duplicates:  {result.append.dropped}")
    print(f"Rejected:    {result.rejected_bars} bars, {result.rejected_articles} articles")
    print()
    _print_events(result.append.events)
    return 0


def cmd_events(args: argparse.Namespace) -> int:
    """List stored events."""
    from emers.types import EventType

    config = _setup(args)
    if config is None:
        return 1
    db = _open_database(config)
    if db is None:
        return 1

    with db:
        if args.start or args.end:
            start = parse_date(args.start) if args.start else dt.date.min
            end = parse_date(args.end) if args.end else dt.date.max
            events = db.find_by_date_range(start, end)
        else:
            events = db.load()
    if args.type:
        event_type = EventType(args.type)
        events = [event for event in events if event.type == event_type]
    if args.symbol:
        events = [event for event in events if event.symbol == args.symbol]
    if args.limit:
        events = events[-args.limit :]
    _print_events(events)
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    """Show database statistics."""
    config = _setup(args)
    if config is None:
        return 1
    db = _open_database(config)
    if db is None:
        return 1

    with db:
        stats = db.stats()

    print("=" * 60)
    print("EVENT DATABASE")
    print("=" * 60)
    print(f"Path:         {config.event_db_path}")
    print(f"Total:        {stats.total}")
    print(f"Last month:   {stats.last_month_count}")
    print(f"Last year:    {stats.last_year_count}")
    print(f"Oldest:       {stats.oldest_date or '-'}")
    print(f"Newest:       {stats.newest_date or '-'}")
    print("\nBy type:")
    for event_type, count in stats.per_type_count.items():
        if count:
            print(f"   {event_type.value:22} {count:>6}")
    return 0


def cmd_report(args: argparse.Namespace) -> int:
    """Print the impact report of one stored event."""
    from emers.analysis import ImpactScorer, render_report

    config = _setup(args)
    if config is None:
        return 1
    db = _open_database(config)
    if db is None:
        return 1

    with db:
        event = db.get(args.event_id)
        if event is None:
            print(f"Event {args.event_id} not found")
            return 1
        similar = db.find_similar(event, args.similar) if args.similar else []
        outcome = db.predict_outcome(event)

    scorer = ImpactScorer(config.threshold_price, config.threshold_volume, config.threshold_atr)
    print(render_report(scorer.assess(event)))
    print(f"Predicted Outcome: {outcome * 100.0:.2f}%")
    if similar:
        print("\nSimilar events:")
        for other, score in similar:
            print(f"   #{other.id:<5} {score:.2f}  {other.date}  {other.type.value:22} {other.description[:40]}")
    return 0


def cmd_backup(args: argparse.Namespace) -> int:
    """Snapshot the database to its backup file."""
    from emers.exceptions import StorageError

    config = _setup(args)
    if config is None:
        return 1
    db = _open_database(config)
    if db is None:
        return 1

    with db:
        try:
            path = db.backup()
        except StorageError as e:
            print(f"Backup failed: {e}")
            return 1
    print(f"Backed up {len(db)} events to {path}")
    return 0


def cmd_restore(args: argparse.Namespace) -> int:
    """Replace the database with its backup."""
    from emers.exceptions import StorageError

    config = _setup(args)
    if config is None:
        return 1
    db = _open_database(config)
    if db is None:
        return 1

    with db:
        try:
            count = db.restore_from_backup()
        except StorageError as e:
            print(f"Restore failed: {e}")
            return 1
    print(f"Restored {count} events from {config.event_db_backup_path}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    from emers.types import EventType

    parser = argparse.ArgumentParser(
        description="Market event detection and recording",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-c", "--config", default=None, help="Path to EMERS YAML configuration")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Detect command
    detect_parser = subparsers.add_parser("detect", help="Fetch data and detect events")
    detect_parser.add_argument("run_config", help="Path to YAML detect configuration file")

    # Events command
    events_parser = subparsers.add_parser("events", help="List stored events")
    events_parser.add_argument("--start", help="First date (YYYY-MM-DD, inclusive)")
    events_parser.add_argument("--end", help="Last date (YYYY-MM-DD, inclusive)")
    events_parser.add_argument(
        "-t", "--type", choices=[event_type.value for event_type in EventType], help="Event type"
    )
    events_parser.add_argument("-s", "--symbol", help="Only events for this symbol")
    events_parser.add_argument("-n", "--limit", type=int, default=0, help="Show only the last N events")

    # Stats command
    subparsers.add_parser("stats", help="Show database statistics")

    # Report command
    report_parser = subparsers.add_parser("report", help="Impact report for one event")
    report_parser.add_argument("event_id", type=int, help="Event ID")
    report_parser.add_argument(
        "--similar", type=int, default=0, help="Also list the N most similar events"
    )

    # Backup / restore commands
    subparsers.add_parser("backup", help="Snapshot the database to the backup file")
    subparsers.add_parser("restore", help="Restore the database from the backup file")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "detect":
        return cmd_detect(args)
    elif args.command == "events":
        return cmd_events(args)
    elif args.command == "stats":
        return cmd_stats(args)
    elif args.command == "report":
        return cmd_report(args)
    elif args.command == "backup":
        return cmd_backup(args)
    elif args.command == "restore":
        return cmd_restore(args)

    return 0


if __name__ == "__main__":
    sys.exit(main())
