"""
Acceptance Test Framework

Staged orchestration for provisioning, validating and tearing down a cluster.
"""

from .logger import RunLogger, get_logger
from .config import HarnessConfig, ConfigError
from .stages import StageConfig, StageRunner, StageFailed
from .wait import RetryPolicy, Success, Failure, RetryExhausted, FatalRetryError, do_with_retry
from .workspace import Workspace, MissingArtifactError, new_workspace, resolve_workspace
from .convergence import (
    ClusterEndpoint,
    ClusterSnapshot,
    ClusterClientError,
    expected_member_count,
    validate_cluster
)
from .membership import find_reachable_endpoint
from .lifecycle import ClusterLifecycle, TeardownError
from .scenario import ClusterExample, EXAMPLES, TestContext, Toolchain, run_cluster_test

__all__ = [
    "RunLogger",
    "get_logger",
    "HarnessConfig",
    "ConfigError",
    "StageConfig",
    "StageRunner",
    "StageFailed",
    "RetryPolicy",
    "Success",
    "Failure",
    "RetryExhausted",
    "FatalRetryError",
    "do_with_retry",
    "Workspace",
    "MissingArtifactError",
    "new_workspace",
    "resolve_workspace",
    "ClusterEndpoint",
    "ClusterSnapshot",
    "ClusterClientError",
    "expected_member_count",
    "validate_cluster",
    "find_reachable_endpoint",
    "ClusterLifecycle",
    "TeardownError",
    "ClusterExample",
    "EXAMPLES",
    "TestContext",
    "Toolchain",
    "run_cluster_test"
]
