"""
DANE TLSA rollover: CLI entry point.

Usage:
  python main.py --once                    # One pass over all managed domains
  python main.py --schedule                # Run now, then hourly (SCHEDULE_MINUTE)
  python main.py --status                  # Show phase per domain, change nothing
  python main.py --once --domains a.com    # Override managed domains for this run
"""
from __future__ import annotations

import argparse
import logging
import logging.handlers
import sys

import structlog

log = logging.getLogger(__name__)


# ── Logging setup ─────────────────────────────────────────────────────────────


def configure_logging(verbose: bool = False, syslog_address: str | None = None) -> None:
    """Console logging, plus the host system log when *syslog_address* is set."""
    level = logging.DEBUG if verbose else logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    handlers[0].setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    if syslog_address:
        syslog = logging.handlers.SysLogHandler(address=syslog_address)
        syslog.setFormatter(logging.Formatter("dane-rollover[%(process)d]: %(message)s"))
        handlers.append(syslog)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # structlog events flow through stdlib logging so they reach syslog too
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


# ── Runners ───────────────────────────────────────────────────────────────────


def _state_from_settings(domains: list[str] | None) -> dict:
    from agent.graph import initial_state
    from config import settings

    return initial_state(
        managed_domains=domains or settings.MANAGED_DOMAINS,
        cert_live_path=settings.CERT_LIVE_PATH,
        serving_path=settings.SERVING_PATH,
        zone_file_pattern=settings.ZONE_FILE_PATTERN,
        tlsa_ports=settings.TLSA_PORTS,
        lock_dir=settings.LOCK_DIR,
    )


def run_once(domains: list[str] | None = None, use_checkpoint: bool = False) -> dict | None:
    """
    Execute one rollover pass and return the final state.

    Returns None without doing anything when another run holds the run lock.
    """
    from pathlib import Path

    from agent.graph import RECURSION_LIMIT, build_graph
    from config import settings
    from storage.locking import LockHeld, run_lock

    try:
        with run_lock(Path(settings.RUN_LOCK_PATH)):
            graph = build_graph(use_checkpointing=use_checkpoint)
            config: dict = {"recursion_limit": RECURSION_LIMIT}
            if use_checkpoint:
                config["configurable"] = {"thread_id": "main"}
            return graph.invoke(_state_from_settings(domains), config=config)
    except LockHeld as exc:
        log.error("Another rollover run is in progress (%s); skipping this run", exc.path)
        return None


def run_status(domains: list[str] | None = None) -> int:
    """Print age, phase and zone state per domain.  Read-only."""
    from dane import commands, tlsa
    from dane.errors import RolloverError
    from dane.rollover import classify_age
    from dane.zone import ZoneStore, endpoint_owners
    from config import settings

    try:
        names = commands.root_domains(domains or settings.MANAGED_DOMAINS) or commands.list_domains()
    except RolloverError as exc:
        log.error("Cannot list domains: %s", exc)
        return 1

    print(f"{'domain':<32} {'age':>9}  {'phase':<8} {'published':<10} retiring")
    for domain in names:
        try:
            bundle = tlsa.inspect(domain, settings.CERT_LIVE_PATH)
        except RolloverError as exc:
            print(f"{domain:<32} {'-':>9}  {'-':<8} {'-':<10} -    ({exc})")
            continue

        published, retiring = "no-dane", "-"
        store = ZoneStore(settings.zone_file(domain), origin=domain)
        if store.exists():
            try:
                zone = store.load()
            except RolloverError as exc:
                published = f"error: {exc}"
            else:
                owners = endpoint_owners(domain, settings.TLSA_PORTS)
                endpoints = zone.dane_endpoints(owners)
                if any(o not in endpoints for o in zone.pinned_endpoints(owners)):
                    published = "unmanaged"
                elif endpoints:
                    published = "yes" if all(bundle.digest in zone.active_digests(o) for o in endpoints) else "no"
                    retiring = "yes" if zone.has_retiring() else "no"

        phase = classify_age(bundle.age).value
        print(f"{domain:<32} {bundle.age:>8}s  {phase:<8} {published:<10} {retiring}")
    return 0


def run_scheduled(domains: list[str] | None = None, use_checkpoint: bool = False) -> None:
    """Run the rollover every hour."""
    import schedule
    import time
    from config import settings

    log.info("Scheduling hourly rollover runs at minute %s", settings.SCHEDULE_MINUTE)

    def job() -> None:
        log.info("Scheduled run triggered")
        try:
            run_once(domains=domains, use_checkpoint=use_checkpoint)
        except Exception as exc:
            log.exception("Scheduled run failed: %s", exc)

    schedule.every().hour.at(settings.SCHEDULE_MINUTE).do(job)

    log.info("Running initial pass immediately...")
    job()

    log.info("Entering schedule loop, press Ctrl+C to stop")
    while True:
        schedule.run_pending()
        time.sleep(30)


# ── CLI ───────────────────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Keep DANE TLSA records in step with certificate renewals",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  dane-rollover --once
  dane-rollover --schedule
  dane-rollover --status
  dane-rollover --once --domains example.com example.org
        """,
    )
    parser.add_argument("--once", action="store_true", help="Run one rollover pass and exit")
    parser.add_argument(
        "--schedule",
        action="store_true",
        help="Run now, then hourly at SCHEDULE_MINUTE",
    )
    parser.add_argument(
        "--status",
        action="store_true",
        help="Show certificate age, phase and TLSA state per domain without changing anything",
    )
    parser.add_argument(
        "--domains",
        nargs="+",
        metavar="DOMAIN",
        help="Override the managed domains for this run",
    )
    parser.add_argument(
        "--checkpoint",
        action="store_true",
        help="Enable MemorySaver checkpointing for the run graph",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.once and not args.schedule and not args.status:
        parser.print_help()
        sys.exit(1)

    from config import settings

    configure_logging(args.verbose, settings.SYSLOG_ADDRESS if settings.LOG_SYSLOG else None)

    if args.status:
        sys.exit(run_status(domains=args.domains))
    elif args.once:
        final_state = run_once(domains=args.domains, use_checkpoint=args.checkpoint)
        sys.exit(0 if final_state is not None and not final_state.get("failed_domains") else 1)
    elif args.schedule:
        run_scheduled(domains=args.domains, use_checkpoint=args.checkpoint)


if __name__ == "__main__":
    main()
