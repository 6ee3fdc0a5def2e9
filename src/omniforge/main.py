"""CLI entrypoint for omniforge."""

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from omniforge import __version__
from omniforge.controllers import (
    CacheCliController,
    CachePurgeCommand,
    CacheStartCommand,
    CommandResult,
    IndexRefreshCommand,
    IndexShowCommand,
    ProjectCommand,
    RunBatchCommand,
    RunDirectoryCommand,
    StateClearCommand,
    TaskCliController,
)
from omniforge.errors import OmniforgeError

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()
CACHE_CONTROLLER = CacheCliController()

_T = TypeVar("_T", list[str], CommandResult)

_project_root_option = click.option(
    "--project-root",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Project root (defaults to OMNIFORGE_PROJECT_ROOT or the current directory).",
)
_profile_option = click.option(
    "--profile",
    default=None,
    help="Stack profile preset, for example asset_manager. Overrides STACK_PROFILE.",
)
_prefetch_option = click.option(
    "--prefetch/--no-prefetch",
    default=None,
    help="Warm the package cache in the background while tasks run.",
)
_prefetch_wait_option = click.option(
    "--prefetch-wait",
    type=click.FloatRange(min=0),
    default=0.0,
    show_default=True,
    help="Seconds to wait for the prefetch job after the run before stopping it.",
)


@click.group()
@click.version_option(version=__version__, prog_name="omniforge")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
def omniforge(log_level: str) -> None:
    """Project bootstrapper task orchestration."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@omniforge.group()
def index() -> None:
    """Task index commands."""


@index.command("refresh")
@_project_root_option
@click.option("--force", is_flag=True, help="Rebuild even if the index is still fresh.")
def index_refresh(project_root: Path | None, force: bool) -> None:
    """Scan task headers and rebuild the metadata index."""

    _run_guarded(
        lambda: TASK_CONTROLLER.refresh_index(
            IndexRefreshCommand(project_root=project_root, force=force),
        ),
    )


@index.command("show")
@_project_root_option
@click.option(
    "--check-env",
    is_flag=True,
    help="Report required variables that are unset in the current environment.",
)
def index_show(project_root: Path | None, check_env: bool) -> None:
    """Show indexed tasks grouped by phase."""

    _run_guarded(
        lambda: TASK_CONTROLLER.show_index(
            IndexShowCommand(project_root=project_root, check_env=check_env),
        ),
    )


@omniforge.group()
def run() -> None:
    """Task execution commands."""


@run.command("batch")
@_project_root_option
@click.argument("scripts", nargs=-1, required=True)
@click.option("--force", is_flag=True, help="Re-run tasks already recorded as completed.")
@_profile_option
@_prefetch_option
@_prefetch_wait_option
def run_batch(  # noqa: PLR0913
    project_root: Path | None,
    scripts: tuple[str, ...],
    force: bool,
    profile: str | None,
    prefetch: bool | None,
    prefetch_wait: float,
) -> None:
    """Run the given task files in order."""

    _finish(
        _run_guarded(
            lambda: TASK_CONTROLLER.run_batch(
                RunBatchCommand(
                    project_root=project_root,
                    scripts=scripts,
                    force=force,
                    profile=profile,
                    prefetch=prefetch,
                    prefetch_wait_seconds=prefetch_wait,
                ),
            ),
        ),
        failure_message="One or more tasks did not succeed.",
    )


@run.command("dir")
@_project_root_option
@click.argument(
    "directory",
    required=False,
    type=click.Path(path_type=Path, file_okay=False),
)
@click.option("--force", is_flag=True, help="Re-run tasks already recorded as completed.")
@_profile_option
@_prefetch_option
@_prefetch_wait_option
def run_dir(  # noqa: PLR0913
    project_root: Path | None,
    directory: Path | None,
    force: bool,
    profile: str | None,
    prefetch: bool | None,
    prefetch_wait: float,
) -> None:
    """Run every task under DIRECTORY (default: the task root) in phase order."""

    _finish(
        _run_guarded(
            lambda: TASK_CONTROLLER.run_directory(
                RunDirectoryCommand(
                    project_root=project_root,
                    directory=directory,
                    force=force,
                    profile=profile,
                    prefetch=prefetch,
                    prefetch_wait_seconds=prefetch_wait,
                ),
            ),
        ),
        failure_message="One or more tasks did not succeed.",
    )


@omniforge.group()
def state() -> None:
    """Completion ledger commands."""


@state.command("status")
@_project_root_option
def state_status(project_root: Path | None) -> None:
    """Show completed tasks."""

    _run_guarded(lambda: TASK_CONTROLLER.state_status(ProjectCommand(project_root=project_root)))


@state.command("clear")
@_project_root_option
@click.argument("task_key")
def state_clear(project_root: Path | None, task_key: str) -> None:
    """Forget the completion of one task so it runs again."""

    _run_guarded(
        lambda: TASK_CONTROLLER.state_clear(
            StateClearCommand(project_root=project_root, task_key=task_key),
        ),
    )


@state.command("reset")
@_project_root_option
@click.confirmation_option(prompt="Clear all recorded task completions?")
def state_reset(project_root: Path | None) -> None:
    """Delete the completion ledger."""

    _run_guarded(lambda: TASK_CONTROLLER.state_reset(ProjectCommand(project_root=project_root)))


@omniforge.group()
def cache() -> None:
    """Package cache commands."""


@cache.command("start")
@_project_root_option
@_profile_option
@click.option(
    "--wait",
    "wait_seconds",
    type=click.FloatRange(min=0),
    default=300.0,
    show_default=True,
    help="Seconds to wait before stopping the prefetch job.",
)
def cache_start(project_root: Path | None, profile: str | None, wait_seconds: float) -> None:
    """Warm the package cache for the enabled features and wait for it."""

    _finish(
        _run_guarded(
            lambda: CACHE_CONTROLLER.start(
                CacheStartCommand(
                    project_root=project_root,
                    profile=profile,
                    wait_seconds=wait_seconds,
                ),
            ),
        ),
        failure_message="Prefetch did not cache every package.",
    )


@cache.command("info")
@_project_root_option
def cache_info(project_root: Path | None) -> None:
    """Show cache location, size, and age policy."""

    _run_guarded(lambda: CACHE_CONTROLLER.info(ProjectCommand(project_root=project_root)))


@cache.command("purge")
@_project_root_option
@click.option(
    "--older-than-days",
    type=click.IntRange(min=0),
    default=None,
    help="Only evict entries older than this many days.",
)
def cache_purge(project_root: Path | None, older_than_days: int | None) -> None:
    """Evict cached packages."""

    _run_guarded(
        lambda: CACHE_CONTROLLER.purge(
            CachePurgeCommand(project_root=project_root, older_than_days=older_than_days),
        ),
    )


@omniforge.command("profiles")
def profiles() -> None:
    """List the available stack profiles."""

    _emit_lines(TASK_CONTROLLER.list_profiles())


def _run_guarded(action: Callable[[], _T]) -> _T:
    """Run a controller call, turning environment-level errors into CLI errors."""

    try:
        result = action()
    except (OmniforgeError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines if isinstance(result, CommandResult) else result)
    return result


def _finish(result: CommandResult, *, failure_message: str) -> None:
    if not result.success:
        raise click.ClickException(failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    omniforge()
