"""Main entry point for the tmdbgov application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Annotated, Any, Callable, Coroutine, Dict, Optional

import typer

# --- Core Layer ---
from tmdbgov.core.command_handler import DEFAULT_MAX_PAGES, CommandHandler
from tmdbgov.core.governor import RequestGovernor

# --- Infrastructure Layer ---
# Config
from tmdbgov.infrastructure.config.settings import (
    DEFAULT_CONFIG_FILE,
    get_config,
    get_governor_settings,
    get_user_agent,
    load_configuration,
)
# UI
from tmdbgov.infrastructure.cli.display import ConsoleDisplay
# HTTP
from tmdbgov.infrastructure.http.httpx_transport import HttpxTransport
# Monitoring
from tmdbgov.infrastructure.monitoring.logger_setup import setup_logging
# Resilience
from tmdbgov.infrastructure.resilience.request_queue import create_queue

logger = logging.getLogger(__name__)

# Global options collected by the callback, read by create_dependencies
_options: Dict[str, Any] = {
    'config_file': DEFAULT_CONFIG_FILE,
    'log_level': None,
}

# --- Dependency Injection Container (Manual) ---

def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for one command run.

    This acts as the Composition Root.
    """
    dependencies: Dict[str, Any] = {}
    try:
        # 1. Load Configuration First
        load_configuration(config_file=_options['config_file'], force=True)
        setup_logging(
            log_level=_options['log_level'] or get_config('logging.level'),
            log_format=get_config('logging.format'),
            log_file=get_config('logging.file'),
        )
        logger.info("Configuration and logging initialized.")

        # 2. Instantiate Infrastructure Adapters
        dependencies['ui'] = ConsoleDisplay()
        dependencies['settings'] = get_governor_settings()
        dependencies['transport'] = HttpxTransport(user_agent=get_user_agent())

        # 3. Instantiate the Governor
        settings = dependencies['settings']
        governor = RequestGovernor(
            dependencies['transport'],
            default_timeout_ms=settings['timeout_ms'],
            max_timeout_ms=settings['max_timeout_ms'],
            min_interval_ms=settings['min_interval_ms'],
            max_backoff_ms=settings['max_backoff_ms'],
            default_retries=settings['default_retries'],
            stats_capacity=settings['stats_capacity'],
            queue=create_queue(settings['retry_priority']),
        )
        if settings['timeout_warning_enabled']:
            ui = dependencies['ui']
            governor.set_timeout_warning(
                True,
                lambda info: ui.display_warning(
                    f"Slow request: {info['url']} at {info['percentage']}% of its {info['timeout_ms']}ms timeout"
                ),
                threshold=settings['timeout_warning_threshold'],
            )
        dependencies['governor'] = governor

        # 4. Instantiate Command Handler
        dependencies['command_handler'] = CommandHandler(governor=governor, ui=dependencies['ui'])
        logger.info("All dependencies initialized successfully.")
        return dependencies

    except Exception as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        if dependencies.get('ui'):
            dependencies['ui'].display_error(f"Application Initialization Failed: {e}")
        else:
            print(f"FATAL ERROR during initialization: {e}", file=sys.stderr)
        raise typer.Exit(code=1)

# --- Typer App Definition ---
app = typer.Typer(
    name="tmdbgov",
    help="tmdbgov: rate-limited, retrying TMDb request governor with streaming page loads.",
    add_completion=False,
)

# --- Helper for Running Async Commands ---
def run_async(make_coro: Callable[[CommandHandler], Coroutine[Any, Any, bool]]) -> None:
    """Runs one handler coroutine on a fresh event loop and maps the outcome to an exit code."""
    dependencies = create_dependencies()
    handler: CommandHandler = dependencies['command_handler']

    async def runner() -> bool:
        try:
            return await make_coro(handler)
        finally:
            await handler.aclose()

    try:
        ok = asyncio.run(runner())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        dependencies['ui'].display_warning("Interrupted")
        raise typer.Exit(code=130)
    except Exception as e:
        logger.error(f"Error executing async command: {e}", exc_info=True)
        dependencies['ui'].display_error(f"Command execution failed: {e}")
        raise typer.Exit(code=1)
    if not ok:
        raise typer.Exit(code=1)

# --- CLI Commands ---

@app.command()
def fetch(
    url: Annotated[str, typer.Argument(help="Full TMDb API URL to GET.")],
    timeout_ms: Annotated[Optional[float], typer.Option("--timeout-ms", "-t", help="Per-attempt timeout in milliseconds.")] = None,
    retries: Annotated[Optional[int], typer.Option("--retries", "-r", min=0, help="Retry budget for 429s and timeouts.")] = None,
):
    """Fetch one URL through the governor and print the JSON body."""
    run_async(lambda handler: handler.handle_fetch(url, timeout_ms=timeout_ms, retries=retries))

@app.command()
def stream(
    base_url: Annotated[str, typer.Argument(help="TMDb list URL without the page parameter.")],
    pages: Annotated[Optional[int], typer.Option("--pages", "-n", min=1, help="Stream pages 1..N without probing page 1 first.")] = None,
    max_pages: Annotated[int, typer.Option("--max-pages", min=1, help="Upper bound on pages when total_pages is read from page 1.")] = DEFAULT_MAX_PAGES,
    stream_id: Annotated[str, typer.Option("--stream-id", help="Identifier of the streaming session.")] = "cli",
):
    """Load a multi-page TMDb list with live progress."""
    run_async(lambda handler: handler.handle_stream(base_url, pages=pages, max_pages=max_pages, stream_id=stream_id))

@app.command(name="settings")
def settings_command():
    """Show the effective governor settings."""
    def show(handler: CommandHandler) -> Coroutine[Any, Any, bool]:
        effective: Dict[str, Any] = dict(get_governor_settings())
        effective['user_agent'] = get_user_agent()
        effective['log_level'] = _options['log_level'] or get_config('logging.level')
        return handler.handle_settings(effective)
    run_async(show)

@app.callback()
def main_callback(
    config: Annotated[Optional[Path], typer.Option("--config", "-c", dir_okay=False, help="YAML configuration file.")] = None,
    log_level: Annotated[Optional[str], typer.Option("--log-level", "-l", help="Override logging.level (DEBUG, INFO, ...).")] = None,
):
    """Global options shared by every command."""
    _options['config_file'] = config or DEFAULT_CONFIG_FILE
    _options['log_level'] = log_level
    logger.debug(f"Global options: {_options}")

# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    app()

if __name__ == "__main__":
    cli_entry_point()
