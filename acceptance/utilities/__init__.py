"""
Test Utilities Package

Adapters for the external tools a run drives:
- Terraform and Packer CLIs (terraform.py, packer.py)
- Google Cloud via gcloud (gcp.py)
- Consul HTTP API (consul_client.py)
- Subprocess execution with timeouts (process.py)
- Unique naming for resource isolation (helpers.py)
"""

from .consul_client import ConsulClient, ConsulError
from .gcp import GoogleCloud
from .helpers import unique_id, cluster_name
from .packer import Packer, PackerOptions
from .process import ToolError, run_tool
from .terraform import Terraform, TerraformOptions

__all__ = [
    "ConsulClient",
    "ConsulError",
    "GoogleCloud",
    "unique_id",
    "cluster_name",
    "Packer",
    "PackerOptions",
    "ToolError",
    "run_tool",
    "Terraform",
    "TerraformOptions",
]
