"""Shared types and factories for CLI commands.

This module wires configuration into backends, sandbox drivers,
operators and the install pipeline so every command builds them the
same way.
"""

import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from types import FrameType

import typer
from rich.panel import Panel

from reap.backends import (
    AurBackend,
    Backend,
    ChaoticBackend,
    FlatpakBackend,
    PacmanBackend,
    TapBackend,
)
from reap.core.audit import AuditCache, AuditPipeline, RecipeStore
from reap.core.config import ReapConfig, load_config
from reap.core.errors import ConfigError, RestoreFailedError
from reap.core.executor import InstallExecutor, WriterLock
from reap.core.graph import GraphBuilder
from reap.core.hooks import HookRegistry, load_script_hooks
from reap.core.paths import (
    get_audit_dir,
    get_build_dir,
    get_cache_dir,
    get_hooks_dir,
    get_lock_path,
    get_snapshots_dir,
    get_state_dir,
)
from reap.core.pipeline import InstallPipeline
from reap.core.resolver import SourceResolver
from reap.core.snapshot import SnapshotManager
from reap.core.state import StateManager
from reap.models.record import BackendOrigin
from reap.operators import FlatpakOperator, Operator, PacmanOperator
from reap.sandbox import (
    BubblewrapDriver,
    FirejailDriver,
    LxcDriver,
    NspawnDriver,
    SandboxDriver,
    SandboxOrchestrator,
)
from reap.utils.cancel import CancelToken
from reap.utils.formatting import err_console, print_error, print_warning

# Exit status when the host could not be restored
EXIT_RESTORE_FAILED = 3


def require_config() -> ReapConfig:
    """Load the configuration or exit with an error message."""
    try:
        return load_config()
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(code=1) from e


def get_backends(config: ReapConfig) -> list[Backend]:
    """Get backend instances in configured preference order.

    Args:
        config: Loaded configuration.

    Returns:
        List of backend instances.
    """
    settings = config.backends
    taps_dir = Path(settings.taps_dir) if settings.taps_dir else get_state_dir() / "taps"
    factories = {
        "pacman": lambda: PacmanBackend(timeout=settings.query_timeout),
        "chaotic": lambda: ChaoticBackend(timeout=settings.query_timeout),
        "aur": lambda: AurBackend(settings.aur_rpc_url, timeout=settings.query_timeout),
        "flatpak": lambda: FlatpakBackend(timeout=settings.query_timeout),
        "tap": lambda: TapBackend(taps_dir),
    }
    return [factories[name]() for name in settings.order]


def get_drivers(config: ReapConfig) -> list[SandboxDriver]:
    """Get sandbox drivers in configured fallback order."""
    factories = {
        "bubblewrap": BubblewrapDriver,
        "nspawn": NspawnDriver,
        "firejail": FirejailDriver,
        "lxc": LxcDriver,
    }
    return [factories[name]() for name in config.sandbox.order]


def get_operators() -> list[Operator]:
    """Get host operators for every backend origin."""
    return [PacmanOperator(), FlatpakOperator()]


def get_snapshot_manager() -> SnapshotManager:
    """Get the snapshot manager for the host root."""
    return SnapshotManager(get_snapshots_dir())


def get_hooks(config: ReapConfig) -> HookRegistry:
    """Get a hook registry with the user's hook scripts loaded."""
    registry = HookRegistry(config.hooks.blocking)
    load_script_hooks(registry, get_hooks_dir(), config.hooks.interpreter)
    return registry


def get_executor(
    config: ReapConfig,
    state: StateManager | None = None,
    hooks: HookRegistry | None = None,
) -> InstallExecutor:
    """Get an install executor bound to the global writer lock."""
    return InstallExecutor(
        get_operators(),
        get_snapshot_manager(),
        state or StateManager(),
        hooks=hooks or get_hooks(config),
        lock=WriterLock(get_lock_path()),
    )


def build_pipeline(config: ReapConfig) -> InstallPipeline:
    """Wire every stage of the install pipeline from configuration.

    Args:
        config: Loaded configuration.

    Returns:
        Ready-to-run InstallPipeline.
    """
    state = StateManager()
    hooks = get_hooks(config)
    backends = get_backends(config)
    resolver = SourceResolver(
        backends,
        order=[BackendOrigin(name) for name in config.backends.order],
        ignored=config.ignored,
        timeout=config.backends.query_timeout,
        max_workers=config.parallel,
    )
    executor = get_executor(config, state, hooks)
    snapshots = get_snapshot_manager()
    audit = AuditPipeline(
        config.trust,
        RecipeStore(get_audit_dir() / "recipes"),
        AuditCache(get_audit_dir() / "cache"),
    )
    sandbox = SandboxOrchestrator(
        get_drivers(config), config.sandbox, state, get_cache_dir() / "sandbox"
    )
    return InstallPipeline(
        resolver,
        GraphBuilder(resolver),
        {backend.origin: backend for backend in backends},
        audit,
        sandbox,
        executor,
        config,
        hooks=hooks,
        build_root=get_build_dir(),
        installed=snapshots.db.installed,
        provides=snapshots.db.provides,
    )


def parse_pins(values: list[str] | None) -> dict[str, BackendOrigin]:
    """Parse ``ORIGIN:NAME`` pin options.

    Raises:
        typer.BadParameter: If a pin is malformed or names an unknown origin.
    """
    pins: dict[str, BackendOrigin] = {}
    for value in values or []:
        origin, sep, name = value.partition(":")
        if not sep or not name:
            msg = f"Pin must look like ORIGIN:NAME, got {value!r}"
            raise typer.BadParameter(msg)
        try:
            pins[name] = BackendOrigin(origin)
        except ValueError as e:
            msg = f"Unknown backend in pin: {origin}"
            raise typer.BadParameter(msg) from e
    return pins


@contextmanager
def interruptible() -> Iterator[CancelToken]:
    """Turn the first Ctrl-C into cooperative cancellation.

    A second Ctrl-C raises KeyboardInterrupt as usual.
    """
    token = CancelToken()
    previous = signal.getsignal(signal.SIGINT)

    def _handler(signum: int, frame: FrameType | None) -> None:
        if token.cancelled:
            raise KeyboardInterrupt
        print_warning("Cancelling; press Ctrl-C again to abort immediately")
        token.cancel()

    signal.signal(signal.SIGINT, _handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


def exit_restore_failed(error: RestoreFailedError) -> typer.Exit:
    """Report a failed restore and return the exit to raise."""
    lines = [str(error), "", *(f"- {failure}" for failure in error.failures)]
    err_console.print(
        Panel("\n".join(lines), title="Manual intervention required", border_style="error")
    )
    return typer.Exit(code=EXIT_RESTORE_FAILED)
