"""
Main Entry Point - CLI for the Draft Session Manager.

Location: main.py (project root)

Usage:
    python main.py serve                      # run the HTTP API
    python main.py sweep [--idle-seconds N]   # one expiry sweep (cron / systemd timer)
    python main.py init-db                    # create the sessions table
    python main.py health                     # check storage connectivity

Exit status is non-zero when a command fails, so schedulers can alert.
"""

import argparse
import asyncio
import sys
from typing import Optional, Sequence

from dotenv import load_dotenv
from colorama import Fore, init as colorama_init

from src.config.settings import Settings, get_settings
from src.config.logging_config import setup_logging
from src.domain.session.cache import SessionCache
from src.domain.session.sweeper import ExpirySweeper
from src.infrastructure.database.connection import close_db_manager, get_db_manager
from src.infrastructure.database.repository import PostgresSessionGateway
from src.shared.exceptions import SessionManagerException

# Initialize colorama
colorama_init(autoreset=True)

# Load environment variables
load_dotenv()


def _postgres_gateway(settings: Settings) -> PostgresSessionGateway:
    return PostgresSessionGateway(get_db_manager(settings))


# ============================================================================
# Commands
# ============================================================================


async def run_sweep(settings: Settings, idle_seconds: Optional[float]) -> int:
    """Run one expiry sweep against the configured database."""
    print(f"{Fore.CYAN}🧹 Sweeping idle sessions...")

    if settings.storage_backend != "postgres":
        print(f"{Fore.YELLOW}⚠ STORAGE_BACKEND={settings.storage_backend}: "
              f"nothing durable to sweep from the CLI")
        return 0

    gateway = _postgres_gateway(settings)
    # The CLI process holds no cached sessions; the cache only satisfies the sweeper.
    sweeper = ExpirySweeper(
        gateway,
        SessionCache(ttl_seconds=settings.session_cache_ttl_seconds),
        idle_threshold_seconds=settings.session_idle_threshold_seconds,
    )
    abandoned = await sweeper.sweep(idle_seconds)
    print(f"{Fore.GREEN}✓ Abandoned {abandoned} idle sessions")
    return 0


async def run_init_db(settings: Settings) -> int:
    print(f"{Fore.CYAN}🗄️ Initializing database schema...")
    await _postgres_gateway(settings).initialize_schema()
    print(f"{Fore.GREEN}✓ Schema ready")
    return 0


async def run_health(settings: Settings) -> int:
    print(f"{Fore.CYAN}=== System Health Check ===")
    print(f"{Fore.CYAN}  Storage backend: {settings.storage_backend}")

    if settings.storage_backend != "postgres":
        print(f"{Fore.GREEN}✓ In-memory storage needs no connectivity")
        return 0

    if await _postgres_gateway(settings).health_check():
        print(f"{Fore.GREEN}✓ Database: Connected")
        return 0

    print(f"{Fore.RED}✗ Database: Health check failed")
    return 1


def run_server(settings: Settings) -> int:
    import uvicorn

    print(f"{Fore.LIGHTCYAN_EX}🚀 {settings.app_name} v{settings.app_version} "
          f"on {settings.api_host}:{settings.api_port}")
    uvicorn.run(
        "src.api.v1.app:app",
        host=settings.api_host,
        port=settings.api_port,
        workers=settings.api_workers,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
    return 0


# ============================================================================
# Argument Parsing
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="Draft Session Manager maintenance and server commands",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("serve", help="Run the HTTP API")

    sweep = subparsers.add_parser("sweep", help="Abandon sessions idle past the threshold")
    sweep.add_argument(
        "--idle-seconds",
        type=float,
        default=None,
        help="Idle threshold override in seconds (default: SESSION_IDLE_THRESHOLD_SECONDS)",
    )

    subparsers.add_parser("init-db", help="Create the sessions table and indexes")
    subparsers.add_parser("health", help="Check storage connectivity")
    return parser


async def dispatch(args: argparse.Namespace, settings: Settings) -> int:
    try:
        if args.command == "sweep":
            return await run_sweep(settings, args.idle_seconds)
        if args.command == "init-db":
            return await run_init_db(settings)
        if args.command == "health":
            return await run_health(settings)
    except SessionManagerException as e:
        print(f"{Fore.RED}✗ {args.command} failed: {e}")
        return 1
    finally:
        close_db_manager()
    return 2


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for CLI mode."""
    args = build_parser().parse_args(argv)

    settings = get_settings()
    setup_logging(settings)

    if args.command == "serve":
        return run_server(settings)
    return asyncio.run(dispatch(args, settings))


# ============================================================================
# Entry Point
# ============================================================================

if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print(f"\n{Fore.YELLOW}Interrupted by user")
        sys.exit(130)
