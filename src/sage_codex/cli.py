"""
Command-line interface for Sage Codex.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import structlog
import uvicorn

from .config import Settings, get_settings

logger = structlog.get_logger()

# Catalogue file sections and the content kind each one loads into
CONTENT_SECTIONS = {
    "frames": "frame",
    "adversaries": "adversary",
    "items": "item",
}


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog once for the process."""
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sage-codex",
        description="Sage Codex - build an adventure with the Sage",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to (default: HOST setting)")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to (default: PORT setting)")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    init_parser = subparsers.add_parser("init", help="Initialize (create .env, data dir, database)")
    init_parser.add_argument(
        "--content",
        type=Path,
        default=None,
        help="JSON catalogue with frames, adversaries and items to load",
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command == "serve":
        run_server(args.host or settings.host, args.port or settings.port, args.reload)
    elif args.command == "config":
        ok = show_config(settings, args.check)
        if args.check and not ok:
            sys.exit(1)
    elif args.command == "init":
        init_project(settings, args.content)
    else:
        parser.print_help()


def run_server(host: str, port: int, reload: bool) -> None:
    """Run the FastAPI server."""
    logger.info("Starting Sage Codex server", host=host, port=port)

    uvicorn.run(
        "sage_codex.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level="info",
    )


def check_config(settings: Settings) -> tuple[list[str], list[str]]:
    """Return (errors, warnings) for the current settings."""
    errors = []
    warnings = []

    key = settings.get_llm_config().api_key
    if not key:
        errors.append(f"An API key for the default provider ({settings.default_provider}) is required")

    if settings.recent_window > settings.max_history_messages:
        errors.append("RECENT_WINDOW cannot exceed MAX_HISTORY_MESSAGES")

    if settings.max_tool_turns < 1:
        errors.append("MAX_TOOL_TURNS must be at least 1")

    if settings.reconnect_interval_ms <= 0:
        warnings.append("RECONNECT_INTERVAL_MS should be positive")

    if "*" in settings.allowed_origins_list:
        warnings.append("CORS allows every origin - restrict ALLOWED_ORIGINS in production")

    return errors, warnings


def show_config(settings: Settings, check: bool) -> bool:
    """Show current configuration. Returns False when the check finds errors."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    print("\n=== Sage Codex Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")
    print(f"  Allowed Origins: {settings.allowed_origins or '(none)'}")

    print("\nLLM Providers:")
    print(f"  Default: {settings.default_provider}")
    print(f"  Default Model: {settings.default_model}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")

    print("\nConversation:")
    print(f"  Recent Window: {settings.recent_window}")
    print(f"  Max History: {settings.max_history_messages}")
    print(f"  Max Tool Turns: {settings.max_tool_turns}")

    print("\nDatabase:")
    print(f"  URL: {settings.database_url}")

    if not check:
        return True

    print("\n=== Configuration Check ===\n")
    errors, warnings = check_config(settings)

    if errors:
        print("Errors:")
        for e in errors:
            print(f"   - {e}")

    if warnings:
        print("Warnings:")
        for w in warnings:
            print(f"   - {w}")

    if not errors and not warnings:
        print("Configuration looks good!")
    elif not errors:
        print("\nConfiguration is valid (with warnings)")
    else:
        print("\nConfiguration has errors - fix them before starting")

    return not errors


async def load_content(settings: Settings, content_file: Path | None) -> int:
    """Create database tables and load an optional catalogue file."""
    from .store import SqlStore

    store = await SqlStore.connect(settings.database_url)
    loaded = 0
    try:
        if content_file is not None:
            catalogue = json.loads(content_file.read_text())
            for section, kind in CONTENT_SECTIONS.items():
                for entry in catalogue.get(section, []):
                    await store.add_content(kind, entry)
                    loaded += 1
    finally:
        await store.close()

    logger.info("Database ready", content_entries=loaded)
    return loaded


def init_project(settings: Settings, content_file: Path | None = None) -> None:
    """Initialize Sage Codex with default configuration."""
    env_file = Path(".env")
    data_dir = Path("data")

    data_dir.mkdir(exist_ok=True)

    if not env_file.exists():
        env_content = """# Sage Codex Configuration

# === REQUIRED ===

# LLM API Keys (set the one for DEFAULT_PROVIDER)
ANTHROPIC_API_KEY=
# OPENAI_API_KEY=

# === OPTIONAL ===

# Default LLM provider and model
DEFAULT_PROVIDER=anthropic
DEFAULT_MODEL=claude-sonnet-4-20250514

# Server
HOST=0.0.0.0
PORT=8080
DEBUG=false
ALLOWED_ORIGINS=http://localhost:5173

# Conversation
# RECENT_WINDOW=10
# MAX_HISTORY_MESSAGES=30
# MAX_TOOL_TURNS=5

# Database
DATABASE_URL=sqlite+aiosqlite:///./data/sage.db
"""
        env_file.write_text(env_content)
        print(f"Created {env_file}")
    else:
        print(f"{env_file} already exists")

    print(f"Created {data_dir}")

    loaded = asyncio.run(load_content(settings, content_file))
    print(f"Database initialized ({loaded} catalogue entries loaded)")

    print("\n=== Next Steps ===")
    print("1. Edit .env and add your ANTHROPIC_API_KEY")
    print("2. Run: sage-codex config --check")
    print("3. Run: sage-codex serve")


if __name__ == "__main__":
    main()
