"""
Command line entry point: run the web service or a single check.
"""
import argparse
import asyncio
import os

from dotenv import load_dotenv

from .database import db_connect, db_init
from .errors import MonitorError
from .export import export_new_since
from .scheduler import CheckOrchestrator
from .session import SessionManager
from .settings import DEFAULT_SCHEDULE, seed_defaults
from .utils import init_logger, now_iso

logger = None


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Classifieds site monitor with change detection and email notifications")
    ap.add_argument("--db", type=str, default=os.getenv("MONITOR_DB", "./data/sitemonitor.db"),
                    help="Path to SQLite DB (default from env MONITOR_DB)")
    # Logging
    lvl_choices = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    ap.add_argument("--log-level", choices=lvl_choices, default=None,
                    help="Global log level for both console and file (overrides --log-console/--log-file).")
    ap.add_argument("--log-console", choices=lvl_choices, default=os.getenv("LOG_CONSOLE", "INFO"),
                    help="Console log level (default from env LOG_CONSOLE or INFO).")
    ap.add_argument("--log-file", choices=lvl_choices, default=os.getenv("LOG_FILE_LEVEL", "DEBUG"),
                    help="File log level (default from env LOG_FILE_LEVEL or DEBUG).")
    ap.add_argument("--log-file-path", default=os.getenv("LOG_FILE", "sitemonitor.log"),
                    help="Path to log file (default from env LOG_FILE or sitemonitor.log).")
    ap.add_argument("--no-file-log", action="store_true",
                    help="Disable file logging (only console output).")

    sub = ap.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API, realtime channel and scheduler")
    serve.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT", "3000")))
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    check = sub.add_parser("check", help="Run one check cycle and exit")
    check.add_argument("--headed", action="store_true", help="Show the browser window")
    check.add_argument("--screenshots-dir", type=str, default="",
                       help="Save a debug screenshot of each target page here")
    check.add_argument("--out", type=str, default="",
                       help="CSV file receiving the listings first seen during this run")

    return ap.parse_args(argv)


async def run_check(db_path: str, headless: bool = True, screenshot_dir: str = "") -> dict:
    """One full check cycle outside the web service."""
    session = SessionManager(headless=headless)
    orchestrator = CheckOrchestrator(
        db_path,
        session,
        default_schedule=os.getenv("DEFAULT_SCHEDULE", DEFAULT_SCHEDULE),
        screenshot_dir=screenshot_dir or None,
    )
    try:
        return await orchestrator.trigger()
    finally:
        await session.close()


def main(argv=None) -> int:
    load_dotenv()
    args = parse_args(argv)
    eff_console = args.log_level or args.log_console
    eff_file = args.log_level or args.log_file
    global logger
    logger = init_logger(
        console_level=eff_console,
        file_level=eff_file,
        log_file=None if args.no_file_log else args.log_file_path
    )
    logger.info(
        f"Logger initialized: console={eff_console}, "
        f"file={'DISABLED' if args.no_file_log else eff_file}, "
        f"path={'N/A' if args.no_file_log else args.log_file_path}"
    )

    if args.command == "serve":
        import uvicorn
        os.environ["MONITOR_DB"] = args.db
        uvicorn.run(
            "api.main:app",
            host=args.host,
            port=args.port,
            reload=args.reload,
            log_level=eff_console.lower()
        )
        return 0

    conn = db_connect(args.db)
    db_init(conn)
    seed_defaults(conn, os.getenv("DEFAULT_SCHEDULE", DEFAULT_SCHEDULE))
    conn.close()

    if args.screenshots_dir:
        os.makedirs(args.screenshots_dir, exist_ok=True)

    run_started_iso = now_iso()
    logger.info(f">>> Run started at {run_started_iso}")
    try:
        result = asyncio.run(run_check(args.db, headless=not args.headed, screenshot_dir=args.screenshots_dir))
    except MonitorError as e:
        logger.error(f">>> Check failed [{e.code}]: {e}")
        return 1

    for summary in result["targets"]:
        logger.info(
            f">>> {summary['target']}: {summary['newItems']} new of {summary['total']} "
            f"(changed={summary['isChanged']})"
        )

    if args.out:
        conn = db_connect(args.db)
        try:
            dfn = export_new_since(conn, run_started_iso)
        finally:
            conn.close()
        dfn.to_csv(args.out, index=False)
        logger.info(f">>> Export only new items: {len(dfn)} rows -> {args.out}")
    return 0
