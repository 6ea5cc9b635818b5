"""Build the CLI's storage, model and generation service from the environment.

Commands only ask for a ready object; which backend, vendor or mode is in
use is decided here.
"""

import logging
import os
from pathlib import Path
from typing import Any, NamedTuple

from rich.console import Console
from rich.logging import RichHandler

from ..history import KeyValueStorage, create_storage_backend
from ..llm import LLMProvider, create_llm_provider
from ..tutor import DemoGenerationService, GenerationService, RemoteGenerationService, TutorService

_console = Console()

DEFAULT_DB_PATH = Path.home() / ".tutorchat" / "history.db"


class _VendorEnv(NamedTuple):
    key_var: str
    model_var: str | None
    default_model: str | None


# LLM_PROVIDER value -> where its credentials and model come from
_VENDORS: dict[str, _VendorEnv] = {
    "gemini": _VendorEnv("GEMINI_API_KEY", "GEMINI_MODEL", "gemini-2.5-flash"),
    "openai": _VendorEnv("OPENAI_API_KEY", "OPENAI_CHAT_MODEL", "gpt-4o-mini"),
    "deepseek": _VendorEnv("DEEPSEEK_API_KEY", None, None),
    "anthropic": _VendorEnv("ANTHROPIC_API_KEY", "ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
}
_VENDORS["claude"] = _VENDORS["anthropic"]


def setup_logging(level: str = "warning", console: Console | None = None) -> None:
    """Send ``tutorchat`` logs to a Rich handler on stderr at ``level``."""
    handler = RichHandler(console=console or Console(stderr=True), show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))

    logger = logging.getLogger("tutorchat")
    logger.handlers[:] = [handler]
    logger.setLevel(level.upper())
    logger.propagate = False


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def get_storage() -> KeyValueStorage:
    """History backend, not yet connected.

    Environment variables:
        TUTORCHAT_STORAGE: 'sqlite' or 'memory' (default: sqlite)
        TUTORCHAT_DB_PATH: SQLite file (default: ~/.tutorchat/history.db)
        TUTORCHAT_QUOTA_BYTES: Optional storage quota in bytes
    """
    backend = os.getenv("TUTORCHAT_STORAGE", "sqlite").lower()
    quota = os.getenv("TUTORCHAT_QUOTA_BYTES")
    options: dict[str, Any] = {"quota_bytes": int(quota) if quota else None}
    if backend == "sqlite":
        options["path"] = os.getenv("TUTORCHAT_DB_PATH", str(DEFAULT_DB_PATH))
    return create_storage_backend(backend, **options)


def get_llm(console: Console | None = None) -> LLMProvider | None:
    """Chat model named by LLM_PROVIDER (default gemini), or None.

    Each vendor reads its key from ``<VENDOR>_API_KEY``; Gemini, OpenAI and
    Anthropic also take a model override (GEMINI_MODEL, OPENAI_CHAT_MODEL,
    ANTHROPIC_MODEL). A missing key prints a warning instead of failing.
    """
    con = console or _console
    name = os.getenv("LLM_PROVIDER", "gemini").lower()
    vendor = _VENDORS.get(name)
    if vendor is None:
        con.print(f"[red]Error: Unknown LLM provider: {name}[/red]")
        return None

    api_key = os.getenv(vendor.key_var)
    if not api_key:
        con.print(f"[yellow]Warning: {vendor.key_var} not set, LLM features disabled[/yellow]")
        return None

    options: dict[str, Any] = {"api_key": api_key}
    if vendor.model_var:
        options["model"] = os.getenv(vendor.model_var, vendor.default_model)
    return create_llm_provider(name, **options)


def get_service(console: Console | None = None, allow_remote: bool = True) -> GenerationService | None:
    """Generation service: demo mode, then a remote server, then a local model.

    Args:
        console: Where configuration warnings go
        allow_remote: Honour TUTORCHAT_API_URL (the server itself must not)

    Environment variables:
        TUTORCHAT_DEMO_MODE: 'true' (or LLM_PROVIDER=demo) for canned replies
        TUTORCHAT_API_URL: Base URL of a running ``tutorchat serve``
    """
    if _env_flag("TUTORCHAT_DEMO_MODE") or os.getenv("LLM_PROVIDER", "").lower() == "demo":
        return DemoGenerationService()

    api_url = os.getenv("TUTORCHAT_API_URL")
    if allow_remote and api_url:
        return RemoteGenerationService(api_url)

    llm = get_llm(console)
    return TutorService(llm) if llm is not None else None


def require_service(console: Console | None = None, allow_remote: bool = True) -> GenerationService:
    """Like ``get_service`` but exits with code 1 when nothing is configured."""
    import typer

    con = console or _console
    service = get_service(con, allow_remote=allow_remote)
    if service is None:
        con.print("[red]Error: LLM provider not configured (set TUTORCHAT_DEMO_MODE=true to try the demo)[/red]")
        raise typer.Exit(code=1)
    return service
