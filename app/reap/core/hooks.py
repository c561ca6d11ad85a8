"""Lifecycle hooks.

Hooks are callables registered for one of four points in the install
lifecycle. Hook scripts dropped into ``~/.config/reap/hooks/<point>/``
are run with the configured interpreter and receive the hook context as
JSON on stdin and as ``REAP_*`` environment variables.

A failing hook is logged and ignored unless its point is configured as
blocking, in which case HookFailedError aborts the unit.
"""

import json
import logging
import os
import subprocess
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass
from pathlib import Path

from reap.core.config import HookPoint
from reap.core.errors import HookFailedError
from reap.utils.shell import run_command

logger = logging.getLogger(__name__)

HOOK_POINTS: tuple[HookPoint, ...] = ("pre_install", "post_build", "post_install", "on_rollback")

# Seconds a hook script may run
HOOK_TIMEOUT = 120.0


@dataclass(frozen=True, slots=True)
class HookContext:
    """Data passed to a hook.

    Attributes:
        point: Lifecycle point being fired.
        package: Package name the hook fires for.
        version: Package version.
        origin: Backend origin value.
        transaction_id: Owning transaction, when one exists.
        tap: Tap name for tap packages.
    """

    point: HookPoint
    package: str
    version: str = ""
    origin: str = ""
    transaction_id: str | None = None
    tap: str | None = None

    def to_env(self) -> dict[str, str]:
        """Render the context as REAP_* environment variables."""
        return {
            f"REAP_{key.upper()}": str(value)
            for key, value in asdict(self).items()
            if value is not None
        }


HookCallback = Callable[[HookContext], None]


@dataclass(frozen=True, slots=True)
class HookOutcome:
    """Result of running one hook.

    Attributes:
        name: Hook name.
        success: Whether the hook completed without error.
        error: Error detail when it failed.
    """

    name: str
    success: bool
    error: str | None = None


class HookRegistry:
    """Holds hooks per lifecycle point and fires them in registration order."""

    def __init__(self, blocking: Iterable[HookPoint] = ()) -> None:
        self._hooks: dict[HookPoint, list[tuple[str, HookCallback]]] = {
            point: [] for point in HOOK_POINTS
        }
        self._blocking = frozenset(blocking)

    def register(self, point: HookPoint, callback: HookCallback, name: str | None = None) -> None:
        """Register a hook callback for a lifecycle point.

        Raises:
            ValueError: If the point is unknown.
        """
        if point not in self._hooks:
            msg = f"Unknown hook point: {point}"
            raise ValueError(msg)
        self._hooks[point].append((name or getattr(callback, "__name__", "hook"), callback))

    def hooks_for(self, point: HookPoint) -> list[str]:
        """Names of hooks registered for a point."""
        return [name for name, _ in self._hooks[point]]

    def is_blocking(self, point: HookPoint) -> bool:
        """Check if failures at this point abort the unit."""
        return point in self._blocking

    def fire(self, context: HookContext) -> list[HookOutcome]:
        """Run every hook registered for the context's point.

        Returns:
            One outcome per hook.

        Raises:
            HookFailedError: If a hook fails at a blocking point.
        """
        outcomes: list[HookOutcome] = []
        for name, callback in self._hooks[context.point]:
            try:
                callback(context)
            # Hooks are user code; any failure is reported, not propagated raw
            except Exception as e:
                logger.warning("Hook %s at %s failed: %s", name, context.point, e)
                if self.is_blocking(context.point):
                    raise HookFailedError(context.point, context.package, f"{name}: {e}") from e
                outcomes.append(HookOutcome(name=name, success=False, error=str(e)))
            else:
                logger.debug("Hook %s at %s succeeded", name, context.point)
                outcomes.append(HookOutcome(name=name, success=True))
        return outcomes


class ScriptHook:
    """Callable that runs a hook script with an interpreter."""

    def __init__(self, script: Path, interpreter: str) -> None:
        self.script = script
        self.interpreter = interpreter
        self.__name__ = script.name

    def __call__(self, context: HookContext) -> None:
        """Run the script.

        Raises:
            RuntimeError: If the script exits non-zero or cannot be run.
        """
        env = {**os.environ, **context.to_env()}
        try:
            result = run_command(
                [self.interpreter, str(self.script)],
                timeout=HOOK_TIMEOUT,
                input_text=json.dumps(asdict(context)),
                env=env,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired) as e:
            msg = f"{self.script.name}: {e}"
            raise RuntimeError(msg) from e
        if not result.success:
            msg = result.stderr.strip() or f"exit status {result.returncode}"
            raise RuntimeError(msg)


def load_script_hooks(registry: HookRegistry, hooks_dir: Path, interpreter: str) -> int:
    """Register every script under ``hooks_dir/<point>/`` in sorted order.

    Returns:
        Number of hooks registered.
    """
    count = 0
    for point in HOOK_POINTS:
        point_dir = hooks_dir / point
        if not point_dir.is_dir():
            continue
        for script in sorted(p for p in point_dir.iterdir() if p.is_file()):
            registry.register(point, ScriptHook(script, interpreter), name=script.name)
            count += 1
    logger.debug("Loaded %d hook script(s) from %s", count, hooks_dir)
    return count
