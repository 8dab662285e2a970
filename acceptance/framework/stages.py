"""
Stage Runner

Sequences the named stages of an acceptance run (setup_image, deploy,
validate, teardown). Any stage can be skipped, which lets a developer deploy
once and re-run validation against the same cluster:

    SKIP_teardown=1 ./run_cluster_test.py ...            # deploy, keep it up
    SKIP_setup_image=1 SKIP_deploy=1 ./run_cluster_test.py ...  # validate again

The runner never reads the environment itself; skips arrive through an
explicit StageConfig.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, Iterable, List, Mapping, Optional, Tuple

SKIP_ENV_PREFIX = "SKIP_"

STAGE_SETUP_IMAGE = "setup_image"
STAGE_DEPLOY = "deploy"
STAGE_VALIDATE = "validate"
STAGE_TEARDOWN = "teardown"

KNOWN_STAGES = (STAGE_SETUP_IMAGE, STAGE_DEPLOY, STAGE_VALIDATE, STAGE_TEARDOWN)


class StageFailed(Exception):
    """Raised when the body of a stage fails. The original error is chained."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"Stage '{stage}' failed: {cause}")


@dataclass(frozen=True)
class StageConfig:
    """Which stages to skip. Absence of a name means run it."""
    skipped: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def skipping(cls, *names: str) -> "StageConfig":
        return cls(frozenset(names))

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "StageConfig":
        """Build from SKIP_<stage> variables; any non-empty value skips."""
        environ = os.environ if environ is None else environ
        skipped = {
            key[len(SKIP_ENV_PREFIX):]
            for key, value in environ.items()
            if key.startswith(SKIP_ENV_PREFIX) and len(key) > len(SKIP_ENV_PREFIX) and value != ""
        }
        return cls(frozenset(skipped))

    def with_skipped(self, names: Iterable[str]) -> "StageConfig":
        return StageConfig(self.skipped | frozenset(names))

    def is_skipped(self, name: str) -> bool:
        return name in self.skipped

    @property
    def any_skipped(self) -> bool:
        return bool(self.skipped)


class StageRunner:
    """
    Executes stages one at a time, in the order the caller invokes them.

    A failing stage raises StageFailed; the caller's remaining run_stage calls
    are therefore never reached. Teardown is not the runner's concern: it is
    released by ClusterLifecycle, which still goes through run_stage so that
    it can be skipped like any other stage.
    """

    def __init__(self, config: Optional[StageConfig] = None, logger=None):
        self.config = config or StageConfig()
        self.logger = logger
        self.history: List[Tuple[str, str]] = []

    def _log(self, subtype: str, name: str, error: Optional[BaseException] = None):
        if self.logger:
            self.logger.stage_event(subtype, name, error=error)
        else:
            suffix = f": {error}" if error is not None else ""
            print(f"[stage] {name} {subtype}{suffix}", flush=True)

    def run_stage(self, name: str, body: Callable[[], Any]) -> Any:
        """
        Run body unless the stage is configured as skipped.

        Returns:
            Whatever body returns, or None when skipped

        Raises:
            StageFailed: If body raised
        """
        if self.config.is_skipped(name):
            self._log("skipped", name)
            self.history.append((name, "skipped"))
            return None

        self._log("started", name)
        try:
            result = body()
        except StageFailed as e:
            # A nested stage already reported and wrapped its own failure
            self.history.append((name, "failed"))
            self._log("failed", name, e)
            raise
        except Exception as e:
            self.history.append((name, "failed"))
            self._log("failed", name, e)
            raise StageFailed(name, e) from e

        self.history.append((name, "passed"))
        self._log("passed", name)
        return result

    def executed(self) -> List[str]:
        """Names of stages whose body actually ran, in order."""
        return [name for name, status in self.history if status != "skipped"]
