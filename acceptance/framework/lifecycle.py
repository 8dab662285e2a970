"""
Cluster Lifecycle

Owns the release of everything an acceptance run provisions. The handle is
acquired as soon as the machine image exists, before deploy has a chance to
create anything, and released on every exit path:

    with ClusterLifecycle(destroy, delete_image, runner=runner):
        runner.run_stage("deploy", deploy)
        runner.run_stage("validate", validate)

Release order is fixed: destroy the infrastructure, then delete the image
it was booted from.
"""

from typing import Callable, List, Optional, Tuple

from .stages import StageRunner, STAGE_TEARDOWN


class TeardownError(Exception):
    """One or more teardown steps failed. Every failure is listed."""

    def __init__(self, errors: List[Tuple[str, BaseException]]):
        self.errors = errors
        details = "; ".join(f"{step}: {error}" for step, error in errors)
        super().__init__(f"Teardown failed ({len(errors)} step(s)): {details}")


class ClusterLifecycle:
    """
    Resource handle for a provisioned cluster and its image.

    release() runs at most once per handle, however many times it is called.
    """

    def __init__(
        self,
        destroy: Callable[[], None],
        delete_image: Callable[[], None],
        runner: Optional[StageRunner] = None,
        stage_name: str = STAGE_TEARDOWN,
        logger=None
    ):
        self._steps = [("destroy", destroy), ("delete_image", delete_image)]
        self.runner = runner or StageRunner(logger=logger)
        self.stage_name = stage_name
        self.logger = logger
        self.released = False

    def _teardown(self):
        errors: List[Tuple[str, BaseException]] = []
        for step, action in self._steps:
            try:
                action()
            except Exception as e:
                errors.append((step, e))
                if self.logger:
                    self.logger.error("teardown_step_failed", f"{step} failed: {e}",
                                      error_type=type(e).__name__, stage=self.stage_name)
                else:
                    print(f"[teardown] {step} failed: {e}", flush=True)
        if errors:
            raise TeardownError(errors)

    def release(self):
        """Destroy infrastructure, then delete the image. Runs once."""
        if self.released:
            return
        self.released = True
        self.runner.run_stage(self.stage_name, self._teardown)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.release()
            return False

        # A stage already failed; it stays the primary error
        try:
            self.release()
        except Exception as teardown_error:
            if isinstance(exc_val, BaseException):
                exc_val.teardown_error = teardown_error
            if self.logger:
                self.logger.error("teardown_failed", str(teardown_error),
                                  error_type=type(teardown_error).__name__, stage=self.stage_name)
            else:
                print(f"[teardown] {teardown_error}", flush=True)
        return False
