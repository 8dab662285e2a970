"""
Terraform CLI adapter.

Only the calls an acceptance run needs: init, apply, destroy, output.
Variables are handed over as a JSON var-file so lists and numbers keep
their types. When options name a state workspace, every command that
touches state selects it first (`workspace select -or-create` needs
Terraform 1.4 or newer).
"""

import json
import os
import tempfile
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional

from .process import run_tool, ToolError

TERRAFORM_BINARY = "terraform"


@dataclass
class TerraformOptions:
    terraform_dir: str
    vars: Dict[str, Any] = field(default_factory=dict)
    env_vars: Dict[str, str] = field(default_factory=dict)
    no_color: bool = True
    # Terraform workspace holding the state; None keeps "default"
    state_workspace: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TerraformOptions":
        return cls(
            terraform_dir=data["terraform_dir"],
            vars=dict(data.get("vars") or {}),
            env_vars=dict(data.get("env_vars") or {}),
            no_color=data.get("no_color", True),
            state_workspace=data.get("state_workspace"),
        )


class Terraform:
    """Runs terraform against the folder named in the options."""

    def __init__(self, binary: str = TERRAFORM_BINARY, runner=run_tool):
        self.binary = binary
        self._run = runner

    def _env(self, options: TerraformOptions) -> Dict[str, str]:
        env = dict(os.environ)
        env.update(options.env_vars)
        env["TF_IN_AUTOMATION"] = "1"
        return env

    def _command(self, options: TerraformOptions, *args: str):
        cmd = [self.binary, *args]
        if options.no_color:
            cmd.append("-no-color")
        return self._run(cmd, cwd=options.terraform_dir, env=self._env(options))

    def _with_var_file(self, options: TerraformOptions, *args: str):
        fd, var_file = tempfile.mkstemp(prefix="acceptance-", suffix=".tfvars.json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(options.vars, f)
            return self._command(options, *args, f"-var-file={var_file}")
        finally:
            os.unlink(var_file)

    def select_workspace(self, options: TerraformOptions):
        """Switch the folder to options.state_workspace, creating it if needed."""
        if not options.state_workspace:
            return None
        # Flags must precede the name, so -no-color is not appended here
        cmd = [self.binary, "workspace", "select", "-or-create=true", options.state_workspace]
        return self._run(cmd, cwd=options.terraform_dir, env=self._env(options))

    def init(self, options: TerraformOptions):
        print(f"[terraform] init in {options.terraform_dir}", flush=True)
        return self._command(options, "init", "-input=false", "-upgrade=false")

    def apply(self, options: TerraformOptions):
        print(f"[terraform] apply in {options.terraform_dir}", flush=True)
        self.select_workspace(options)
        return self._with_var_file(options, "apply", "-input=false", "-auto-approve")

    def init_and_apply(self, options: TerraformOptions):
        self.init(options)
        return self.apply(options)

    def destroy(self, options: TerraformOptions):
        print(f"[terraform] destroy in {options.terraform_dir}", flush=True)
        self.select_workspace(options)
        return self._with_var_file(options, "destroy", "-input=false", "-auto-approve")

    def outputs(self, options: TerraformOptions) -> Dict[str, Any]:
        self.select_workspace(options)
        result = self._command(options, "output", "-json")
        raw = json.loads(result.stdout or "{}")
        return {name: entry.get("value") for name, entry in raw.items()}

    def output_required(self, options: TerraformOptions, name: str) -> str:
        """Read one output, failing if it is missing or empty."""
        value: Optional[Any] = self.outputs(options).get(name)
        if value is None or value == "":
            raise ToolError(
                [self.binary, "output", name], 0,
                reason=f"returned no value for required output '{name}'"
            )
        return str(value)
