#!/usr/bin/env python3
"""asterisk-sync command line.

Usage:
    asterisk-sync status
    asterisk-sync db-to-asterisk [EXTENSION] [--force]
    asterisk-sync asterisk-to-db [EXTENSION] [--force]
    asterisk-sync all-db [--force]
    asterisk-sync all-asterisk [--force]
    asterisk-sync remove IDENTITY [--force]
    asterisk-sync monitor-events [--supervise]
"""
import argparse
import logging
import signal
import sys
from typing import Optional

from .ami.errors import AmiConnectError
from .events import EventMonitor, MonitorSupervisor
from .pjsip.errors import PjsipConfigError
from .pjsip.history import ConfigHistory
from .pjsip.store import PjsipConfigFile
from .settings import Settings, load_settings
from .sync import (
    AmiLiveStatusProvider,
    AmiReloader,
    CliLiveStatusProvider,
    CliReloader,
    ReconciliationEngine,
    SyncError,
    YamlEndpointRepository,
    summarize_status,
)
from .sync.schema import BatchResult
from .utils.audit_log import setup_audit_logging
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def ask_confirmation(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def build_engine(settings: Settings, confirm=ask_confirmation) -> ReconciliationEngine:
    """Wire an engine from settings."""
    history = ConfigHistory(settings.pjsip_config.parent) if settings.git_history else None
    config_file = PjsipConfigFile(settings.pjsip_config, history=history)
    repository = YamlEndpointRepository(settings.database_path)

    if settings.live_status == "cli":
        live_status = CliLiveStatusProvider()
        reloader = CliReloader(settings.reload_modules)
    else:
        live_status = AmiLiveStatusProvider(settings.ami.connect)
        reloader = AmiReloader(settings.ami.connect, settings.reload_modules)

    return ReconciliationEngine(
        repository,
        config_file,
        live_status=live_status,
        reloader=reloader,
        confirm=confirm,
        manage_transports=settings.manage_transports,
    )


def print_status(engine: ReconciliationEngine) -> int:
    statuses = engine.status()
    labels = {"db_only": "DB only", "config_only": "Config only", "both": "Both"}

    print(f"{'Extension':<10} {'Name':<24} {'Source':<12} {'Registered':<11} Differences")
    print("-" * 72)
    for s in statuses:
        if s.registered is None:
            registered = "unknown"
        else:
            registered = "yes" if s.registered else "no"
        print(
            f"{s.identity:<10} {s.name[:24]:<24} {labels[s.membership.value]:<12} "
            f"{registered:<11} {', '.join(s.diff_fields) or '-'}"
        )

    counts = summarize_status(statuses)
    print()
    print("Summary:")
    print(f"  Total:       {counts['total']}")
    print(f"  Synced:      {counts['synced']}")
    print(f"  DB only:     {counts['db_only']}")
    print(f"  Config only: {counts['config_only']}")
    print(f"  Mismatched:  {counts['mismatched']}")
    return 0


def print_result(result: BatchResult) -> int:
    for identity in result.succeeded:
        print(f"  OK    {identity}")
    for identity in result.unchanged:
        print(f"  SAME  {identity}")
    for identity, reason in result.failed.items():
        print(f"  FAIL  {identity}: {reason}")
    print(result.summary())
    return result.exit_code


def run_monitor(settings: Settings, supervise: bool) -> int:
    monitor = EventMonitor(lambda: settings.ami.connect(events=True))
    monitor.on("*", lambda event: print(f"{event.get('Event')}: {event}"))

    def _stop(signum, frame):
        monitor.stop()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    if supervise:
        supervisor = MonitorSupervisor(
            monitor,
            max_attempts=settings.monitor.max_attempts,
            min_wait=settings.monitor.min_wait,
            max_wait=settings.monitor.max_wait,
        )
        supervisor.run()
        return 0
    return 0 if monitor.start() else 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="asterisk-sync",
        description="Synchronize extensions between the database, pjsip.conf and Asterisk",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Compare database, pjsip.conf and live registrations
    asterisk-sync status

    # Write extension 101 from the database into pjsip.conf and reload
    asterisk-sync db-to-asterisk 101 --force

    # Import every extension found in pjsip.conf
    asterisk-sync all-asterisk

Environment:
    ASTERISK_SYNC_CONFIG    Settings file
    ASTERISK_AMI_SECRET     AMI secret
""",
    )
    parser.add_argument(
        "action",
        choices=["status", "db-to-asterisk", "asterisk-to-db", "all-db", "all-asterisk", "remove", "monitor-events"],
        help="What to do",
    )
    parser.add_argument("identity", nargs="?", help="Extension number or trunk name")
    parser.add_argument("--force", "-f", action="store_true", help="Skip confirmation prompts")
    parser.add_argument("--config", "-c", help="Settings file (default: search standard locations)")
    parser.add_argument("--supervise", action="store_true", help="Reconnect the event monitor after drops")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose)

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as e:
        logger.error(f"Cannot load settings: {e}")
        return 2
    setup_audit_logging(settings.audit_log_dir)

    if args.action in ("db-to-asterisk", "asterisk-to-db", "remove") and not args.identity:
        parser.error(f"{args.action} requires an extension number or trunk name")

    try:
        if args.action == "monitor-events":
            return run_monitor(settings, args.supervise)

        engine = build_engine(settings)
        if args.action == "status":
            return print_status(engine)
        if args.action == "db-to-asterisk":
            return print_result(engine.push_to_config(args.identity, force=args.force))
        if args.action == "asterisk-to-db":
            return print_result(engine.pull_from_config(args.identity, force=args.force))
        if args.action == "all-db":
            return print_result(engine.push_to_config(force=args.force))
        if args.action == "all-asterisk":
            return print_result(engine.pull_from_config(force=args.force))
        return print_result(engine.remove_from_config(args.identity, force=args.force))
    except AmiConnectError as e:
        logger.error(f"AMI connection failed ({e.reason.value}): {e}")
        return 1
    except (PjsipConfigError, SyncError) as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
