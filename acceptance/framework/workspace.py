"""
Workspace Store

Terraform keeps its state files next to its configuration, so two runs
against the same example folder would overwrite each other's state. Each run
therefore works in its own copy of the repository, and everything a later
stage needs (zone, image id, Terraform options) is persisted inside that copy
under .test-data/ so a separate invocation can pick it up.

When stages are skipped the original folder is used in place instead, and
every example run against it keeps its values in its own namespace.
"""

import json
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Optional, Tuple, Union

from ..utilities.terraform import TerraformOptions

TEST_DATA_DIR = ".test-data"

KEY_ARTIFACT_ID = "Artifact"
KEY_TERRAFORM_OPTIONS = "TerraformOptions"

# Never carried into a fresh workspace, at any depth
COPY_IGNORE = shutil.ignore_patterns(
    ".terraform", "*.tfstate", "*.tfstate.backup", "terraform.tfstate.d",
    ".terraform.lock.hcl", TEST_DATA_DIR, ".git", "__pycache__"
)

# Harness output folder; skipped only directly under the source root
ARTIFACTS_DIR_NAME = "artifacts"


def copy_ignore(source_root: Path):
    """copytree ignore callback for a copy of source_root."""
    source_root = Path(source_root).resolve()

    def ignore(directory, names):
        ignored = set(COPY_IGNORE(directory, names))
        if Path(directory).resolve() == source_root and ARTIFACTS_DIR_NAME in names:
            ignored.add(ARTIFACTS_DIR_NAME)
        return ignored

    return ignore


class MissingArtifactError(Exception):
    """Raised when a stage needs a value that an earlier stage never saved."""

    def __init__(self, workspace: Path, key: str):
        self.workspace = workspace
        self.key = key
        super().__init__(
            f"No value saved for '{key}' in workspace {workspace}; "
            f"did the stage that produces it run?"
        )


def new_workspace(
    source_root: Union[str, Path],
    sub_path: Union[str, Path],
    base_dir: Optional[Union[str, Path]] = None
) -> Path:
    """
    Copy source_root into a fresh, uniquely named temp directory.

    Args:
        source_root: Root of the configuration tree to copy
        sub_path: Folder inside source_root the run works in
        base_dir: Parent for the temp directory (default: system temp)

    Returns:
        Path of sub_path inside the copy
    """
    source_root = Path(source_root).resolve()
    if not (source_root / sub_path).is_dir():
        raise FileNotFoundError(f"{source_root / sub_path} is not a directory")

    tmp_root = Path(tempfile.mkdtemp(prefix=f"{source_root.name}-", dir=base_dir))
    copy_root = tmp_root / source_root.name
    shutil.copytree(source_root, copy_root, ignore=copy_ignore(source_root), symlinks=True)
    return copy_root / sub_path


def resolve_workspace(
    source_root: Union[str, Path],
    sub_path: Union[str, Path],
    stages=None,
    workspace_dir: Optional[Union[str, Path]] = None,
    base_dir: Optional[Union[str, Path]] = None
) -> Path:
    """
    Pick the folder a run works in.

    An explicit workspace_dir is always reused. Otherwise, when any stage is
    skipped the original folder is used in place, so values saved by an
    earlier invocation are still there. Otherwise a fresh copy is made.
    """
    if workspace_dir:
        path = Path(workspace_dir)
        if not path.is_dir():
            raise FileNotFoundError(f"Workspace {path} does not exist")
        return path

    if stages is not None and stages.any_skipped:
        print(
            "[workspace] A stage is skipped; using the original folder so data "
            "persists between invocations",
            flush=True
        )
        return Path(source_root) / sub_path

    return new_workspace(source_root, sub_path, base_dir=base_dir)


def _check_name(kind: str, name: str):
    if not name or os.sep in name or "/" in name or name.startswith("."):
        raise ValueError(f"Invalid workspace {kind}: {name!r}")


class Workspace:
    """
    Key/value artifacts persisted as JSON files inside one working folder.

    A folder used in place can be shared by several examples; giving each a
    namespace keeps their values under .test-data/<namespace>/ so one
    example's image id or Terraform options never replace another's.
    """

    def __init__(self, path: Union[str, Path], namespace: Optional[str] = None):
        if namespace is not None:
            _check_name("namespace", namespace)
        self.path = Path(path)
        self.namespace = namespace
        self.data_dir = self.path / TEST_DATA_DIR
        if namespace:
            self.data_dir = self.data_dir / namespace

    def __repr__(self) -> str:
        if self.namespace:
            return f"Workspace({str(self.path)!r}, namespace={self.namespace!r})"
        return f"Workspace({str(self.path)!r})"

    def _key_path(self, key: str) -> Path:
        _check_name("key", key)
        return self.data_dir / f"{key}.json"

    def save_value(self, key: str, value: Any) -> Path:
        """Persist a JSON-serializable value under key, replacing any old one."""
        serialized = json.dumps(value, indent=2, sort_keys=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        target = self._key_path(key)

        fd, tmp = tempfile.mkstemp(prefix=f".{key}.", dir=self.data_dir)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(serialized)
            os.replace(tmp, target)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        return target

    def load_value(self, key: str) -> Tuple[Any, bool]:
        """Return (value, True), or (None, False) if nothing was saved."""
        target = self._key_path(key)
        if not target.exists():
            return None, False
        with open(target, "r") as f:
            return json.load(f), True

    def require_value(self, key: str) -> Any:
        value, found = self.load_value(key)
        if not found:
            raise MissingArtifactError(self.path, key)
        return value

    def has_value(self, key: str) -> bool:
        return self._key_path(key).exists()

    # Typed helpers

    def save_string(self, key: str, value: str) -> Path:
        return self.save_value(key, str(value))

    def load_string(self, key: str) -> str:
        value = self.require_value(key)
        if not isinstance(value, str):
            raise TypeError(f"Workspace value '{key}' is {type(value).__name__}, expected str")
        return value

    def save_artifact_id(self, artifact_id: str) -> Path:
        return self.save_string(KEY_ARTIFACT_ID, artifact_id)

    def load_artifact_id(self) -> str:
        return self.load_string(KEY_ARTIFACT_ID)

    def save_terraform_options(self, options: TerraformOptions) -> Path:
        return self.save_value(KEY_TERRAFORM_OPTIONS, options.to_dict())

    def load_terraform_options(self) -> TerraformOptions:
        return TerraformOptions.from_dict(self.require_value(KEY_TERRAFORM_OPTIONS))
