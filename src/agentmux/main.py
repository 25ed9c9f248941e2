"""Main CLI entry point for Agentmux.

This module provides the main Typer application: task management under
``agentmux task`` and the execution, revert and inspection commands at the
top level.

Usage:
    agentmux task add webapp "Add health endpoint" --snippet "create GET /health"
    agentmux run 1
    agentmux revert 1
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Awaitable, Callable, Optional, TypeVar

import typer
from rich.console import Console

from agentmux.checkpoint.engine import CheckpointEngine
from agentmux.cli import execution as execution_cli
from agentmux.cli import task as task_cli
from agentmux.config import AgentmuxConfig, load_config
from agentmux.database.connection import get_engine, get_session_factory, init_db
from agentmux.database.store import SqlExecutionStore, SqlTaskProvider
from agentmux.driver.agent import AgentDriver
from agentmux.locking.execution_lock import ExecutionLock, LockSweeper
from agentmux.logging import setup_logging
from agentmux.orchestrator.executor import ExecutionService
from agentmux.terminal.session import SessionRegistry

T = TypeVar("T")

app = typer.Typer(
    name="agentmux",
    help="Agentmux: drive a terminal AI agent with checkpoints and reverts",
    no_args_is_help=True,
)

app.add_typer(task_cli.app, name="task", help="Manage tasks")

app.command(name="init-db")(execution_cli.init_db_command)
app.command(name="run")(execution_cli.run)
app.command(name="run-project")(execution_cli.run_project)
app.command(name="revert")(execution_cli.revert)
app.command(name="revert-project")(execution_cli.revert_project)
app.command(name="can-revert")(execution_cli.can_revert)
app.command(name="iterations")(execution_cli.iterations)
app.command(name="snapshot")(execution_cli.snapshot)
app.command(name="diff")(execution_cli.diff)

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded Agentmux configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
        lock: Process-wide execution lock
        sessions: Screen session registry
        checkpoints: Git checkpoint engine
    """

    def __init__(self, config: AgentmuxConfig):
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)
        self.lock = ExecutionLock()
        self.sessions = SessionRegistry(config.session)
        self.checkpoints = CheckpointEngine(config.checkpoint)

    def build_service(self) -> ExecutionService:
        """Assemble an ExecutionService over this context's components."""
        return ExecutionService(
            config=self.config.execution,
            lock=self.lock,
            driver=AgentDriver(self.sessions, self.config.driver),
            checkpoints=self.checkpoints,
            store=SqlExecutionStore(self.session_factory),
            tasks=SqlTaskProvider(self.session_factory),
        )

    def build_sweeper(self) -> LockSweeper:
        """Create the stale-lock sweeper for long-running commands."""
        return LockSweeper(self.lock, self.config.lock)


# Global context holder
_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: AgentmuxConfig) -> AppContext:
    """Initialize the global application context."""
    global _app_context
    _app_context = AppContext(config)
    return _app_context


def run_async(ctx: AppContext, factory: Callable[[], Awaitable[T]]) -> T:
    """Run a coroutine against the context's database.

    Missing tables are created first and the engine is disposed afterwards,
    so each command owns its event loop and connection pool.
    """

    async def _runner() -> T:
        try:
            await init_db(ctx.engine)
            return await factory()
        finally:
            await ctx.engine.dispose()

    return asyncio.run(_runner())


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure global options and initialize application context."""
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        config.logging.level = "DEBUG"
    setup_logging(config.logging)

    try:
        initialize_context(config)
    except Exception as e:
        console.print(f"[red]Error initializing application:[/red] {e}")
        raise typer.Exit(code=1)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
