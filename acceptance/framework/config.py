"""
Run Configuration

Everything an acceptance run takes from its environment is read once, here,
into a HarnessConfig that is passed down explicitly.

Environment Variables:
    GOOGLE_CLOUD_PROJECT_ID: GCP project to deploy into (or GOOGLE_CLOUD_PROJECT)
    GOOGLE_CLOUD_REGION: GCP region (default: us-east1)
    CLUSTER_TEST_ARTIFACTS: Directory for logs and run summaries
    CLUSTER_TEST_WORKSPACE: Reuse this workspace instead of copying the examples
    CLUSTER_TEST_REPO_ROOT: Root of the Terraform/Packer module under test (default: this repository)
    SKIP_<stage>: Skip the named stage (setup_image, deploy, validate, teardown)
    TEST_SEED: Master seed for deterministic random choices in tests (default: 42)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .stages import StageConfig

PROJECT_ID_ENV_VARS = ("GOOGLE_CLOUD_PROJECT_ID", "GOOGLE_CLOUD_PROJECT")
REGION_ENV_VAR = "GOOGLE_CLOUD_REGION"
DEFAULT_REGION = "us-east1"
DEFAULT_SEED = 42

# Root of this repository; example folders are resolved relative to it
REPO_ROOT = Path(__file__).parent.parent.parent


class ConfigError(Exception):
    """Raised when a required setting is missing."""
    pass


@dataclass
class HarnessConfig:
    project_id: Optional[str] = None
    region: str = DEFAULT_REGION
    artifacts_dir: Optional[Path] = None
    workspace_dir: Optional[Path] = None
    stages: StageConfig = field(default_factory=StageConfig)
    seed: int = DEFAULT_SEED
    repo_root: Path = REPO_ROOT

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "HarnessConfig":
        environ = os.environ if environ is None else environ

        project_id = None
        for var in PROJECT_ID_ENV_VARS:
            if environ.get(var):
                project_id = environ[var]
                break

        artifacts = environ.get("CLUSTER_TEST_ARTIFACTS")
        workspace = environ.get("CLUSTER_TEST_WORKSPACE")
        repo_root = environ.get("CLUSTER_TEST_REPO_ROOT")

        return cls(
            project_id=project_id,
            region=environ.get(REGION_ENV_VAR) or DEFAULT_REGION,
            artifacts_dir=Path(artifacts) if artifacts else None,
            workspace_dir=Path(workspace) if workspace else None,
            stages=StageConfig.from_env(environ),
            seed=int(environ.get("TEST_SEED", str(DEFAULT_SEED))),
            repo_root=Path(repo_root) if repo_root else REPO_ROOT,
        )

    def require_project_id(self) -> str:
        if not self.project_id:
            raise ConfigError(
                f"No GCP project configured; set one of {', '.join(PROJECT_ID_ENV_VARS)}"
            )
        return self.project_id
