"""Sandbox orchestrator.

Picks the first available sandbox backend from the configured order,
provisions an ephemeral environment for one package, runs its build and
install steps, records the filesystem diff and network log, and always
tears the environment down exactly once.
"""

import logging
import shutil
import time
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path

from reap.core.config import SandboxConfig
from reap.core.errors import CancelledError, NoSandboxBackendError
from reap.core.state import StateManager
from reap.models.record import FetchedArtifact
from reap.models.sandbox import FileChange, NetworkEvent, RunStatus, SandboxRun, SandboxStep
from reap.sandbox.driver import SandboxDriver, SandboxEnv
from reap.utils.cancel import CancelToken

logger = logging.getLogger(__name__)


class SandboxOrchestrator:
    """Runs packages through an ephemeral sandbox.

    Attributes:
        drivers: Candidate drivers in preference order.
    """

    def __init__(
        self,
        drivers: Sequence[SandboxDriver],
        config: SandboxConfig,
        state: StateManager,
        scratch_root: Path,
    ) -> None:
        self.drivers = list(drivers)
        self._config = config
        self._state = state
        self._scratch_root = scratch_root

    def select_driver(self) -> SandboxDriver:
        """Return the first available driver.

        Raises:
            NoSandboxBackendError: If none is available. Sandboxing is
                never bypassed.
        """
        for driver in self.drivers:
            if driver.is_available():
                return driver
            logger.info("Sandbox backend %s unavailable, trying next", driver.kind.value)
        raise NoSandboxBackendError([driver.kind.value for driver in self.drivers])

    def run(
        self,
        artifact: FetchedArtifact,
        steps: Sequence[SandboxStep],
        cancel: CancelToken | None = None,
    ) -> SandboxRun:
        """Build and test-install one artifact.

        The run is persisted whatever its outcome.

        Returns:
            SandboxRun describing the outcome.

        Raises:
            NoSandboxBackendError: If no backend is available.
            CancelledError: If cancelled; raised after teardown.
        """
        driver = self.select_driver()
        run_id = uuid.uuid4().hex[:12]
        log_path = self._state.run_log_path(run_id)
        scratch = self._scratch_root / run_id
        started = datetime.now(UTC).isoformat()
        t0 = time.monotonic()

        status = RunStatus.SUCCEEDED
        exit_code = 0
        failed_step: str | None = None
        changes: list[FileChange] = []
        network: list[NetworkEvent] = []
        env: SandboxEnv | None = None

        logger.info("Sandboxing %s with %s", artifact.record.key, driver.kind.value)
        try:
            try:
                env = driver.provision(
                    Path(self._config.base_image),
                    scratch,
                    artifact.workdir,
                    self._config.allow_network,
                )
            except (RuntimeError, OSError) as e:
                logger.error("Provisioning %s sandbox failed: %s", driver.kind.value, e)
                self._append_log(log_path, f"provision failed: {e}\n")
                status, exit_code, failed_step = RunStatus.FAILED, -1, "provision"
            else:
                status, exit_code, failed_step = self._run_steps(
                    driver, env, steps, cancel, log_path
                )
                try:
                    changes, network = driver.trace(env)
                except OSError as e:
                    logger.error("Tracing %s failed: %s", artifact.record.key, e)
                    if status == RunStatus.SUCCEEDED:
                        status, failed_step = RunStatus.FAILED, "trace"
        finally:
            if env is not None:
                driver.teardown(env)
            else:
                shutil.rmtree(scratch, ignore_errors=True)

        run = SandboxRun(
            id=run_id,
            record=artifact.record,
            backend=driver.kind,
            status=status,
            exit_code=exit_code,
            duration=round(time.monotonic() - t0, 3),
            changes=tuple(changes),
            network=tuple(network),
            started=started,
            failed_step=failed_step,
            log_path=str(log_path),
        )
        self._state.save_run(run)
        logger.info("Sandbox run %s for %s: %s", run.id, artifact.record.key, status.value)

        if status == RunStatus.CANCELLED:
            raise CancelledError("sandbox")
        return run

    def _run_steps(
        self,
        driver: SandboxDriver,
        env: SandboxEnv,
        steps: Sequence[SandboxStep],
        cancel: CancelToken | None,
        log_path: Path,
    ) -> tuple[RunStatus, int, str | None]:
        exit_code = 0
        for step in steps:
            if cancel is not None and cancel.cancelled:
                return RunStatus.CANCELLED, exit_code, step.name
            result = driver.exec(
                env,
                step.name,
                step.argv,
                timeout=self._config.timeout,
                cancel=cancel,
                log_path=log_path,
            )
            exit_code = result.returncode
            if result.cancelled:
                return RunStatus.CANCELLED, exit_code, step.name
            if result.timed_out:
                logger.warning("Step %s timed out after %ss", step.name, self._config.timeout)
                return RunStatus.TIMED_OUT, exit_code, step.name
            if not result.success:
                logger.warning("Step %s failed with exit status %d", step.name, exit_code)
                return RunStatus.FAILED, exit_code, step.name
        return RunStatus.SUCCEEDED, exit_code, None

    @staticmethod
    def _append_log(log_path: Path, text: str) -> None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with log_path.open(mode="a", encoding="utf-8") as f:
            f.write(text)
