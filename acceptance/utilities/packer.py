"""
Packer CLI adapter: builds a machine image and reports its id.

Packer's -machine-readable output is CSV-like:
    timestamp,target,type,data...
The image id is on the line whose type is "artifact" with data "0,id,<id>".
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from .process import run_tool, ToolError

PACKER_BINARY = "packer"

# Build output uses %!(PACKER_COMMA) for commas inside a field
PACKER_COMMA = "%!(PACKER_COMMA)"


@dataclass
class PackerOptions:
    template: str
    only: Optional[str] = None
    vars: Dict[str, str] = field(default_factory=dict)
    env_vars: Dict[str, str] = field(default_factory=dict)


def parse_artifact_id(output: str) -> str:
    """Extract the id of the first artifact from machine-readable build output."""
    for line in output.splitlines():
        parts = line.strip().split(",")
        if len(parts) >= 6 and parts[2] == "artifact" and parts[4] == "id":
            artifact_id = ",".join(parts[5:]).replace(PACKER_COMMA, ",")
            # Multi-region builders report "region:id"; GCE images are bare names
            return artifact_id.split(":", 1)[1] if ":" in artifact_id else artifact_id
    raise ValueError("No artifact id found in packer output")


class Packer:
    def __init__(self, binary: str = PACKER_BINARY, runner=run_tool):
        self.binary = binary
        self._run = runner

    def build_artifact(self, options: PackerOptions) -> str:
        """Run packer build and return the artifact id."""
        cmd = [self.binary, "build", "-machine-readable", "-force"]
        if options.only:
            cmd.append(f"-only={options.only}")
        for name, value in sorted(options.vars.items()):
            cmd.extend(["-var", f"{name}={value}"])
        cmd.append(options.template)

        env = None
        if options.env_vars:
            env = dict(os.environ)
            env.update(options.env_vars)

        print(f"[packer] building {options.only or 'all builds'} from {options.template}", flush=True)
        result = self._run(cmd, env=env)
        try:
            return parse_artifact_id(result.stdout)
        except ValueError as e:
            raise ToolError(cmd, result.returncode, result.stderr, reason=str(e)) from e


def build_image(packer: Packer, template: str, build_name: str, project_id: str, zone: str) -> str:
    """Build the cluster image for one project/zone."""
    return packer.build_artifact(PackerOptions(
        template=template,
        only=build_name,
        vars={"project_id": project_id, "zone": zone},
    ))
