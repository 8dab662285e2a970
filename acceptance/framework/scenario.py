"""
Consul Cluster Scenario

Tests an example by:

1. Copying the repository to a temp folder so runs against the same Terraform
   code can proceed in parallel without their state files overwriting each other
2. Building the image from the example's Packer template
3. Deploying that image with the example's Terraform code
4. Checking that the server and client groups come up and converge within a
   reasonable time period
5. Destroying the deployment and deleting the image, whatever happened above
"""

import random
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from .config import ConfigError, HarnessConfig
from .convergence import CONVERGENCE_POLICY, expected_member_count, validate_cluster
from .lifecycle import ClusterLifecycle
from .logger import RunLogger
from .membership import INSTANCE_GROUP_POLICY, find_reachable_endpoint
from .stages import StageRunner, STAGE_SETUP_IMAGE, STAGE_DEPLOY, STAGE_VALIDATE, STAGE_TEARDOWN
from .wait import RetryPolicy
from .workspace import KEY_TERRAFORM_OPTIONS, Workspace, resolve_workspace
from ..utilities.consul_client import ConsulClient
from ..utilities.gcp import GoogleCloud
from ..utilities.helpers import cluster_name, unique_id
from ..utilities.packer import Packer, build_image
from ..utilities.terraform import Terraform, TerraformOptions

# Terraform input variables
VAR_PROJECT = "gcp_project"
VAR_REGION = "gcp_region"
VAR_ZONE = "gcp_zone"
VAR_SERVER_CLUSTER_NAME = "consul_server_cluster_name"
VAR_CLIENT_CLUSTER_NAME = "consul_client_cluster_name"
VAR_SERVER_CLUSTER_TAG_NAME = "consul_server_cluster_tag_name"
VAR_CLIENT_CLUSTER_TAG_NAME = "consul_client_cluster_tag_name"
VAR_SERVER_SOURCE_IMAGE = "consul_server_source_image"
VAR_CLIENT_SOURCE_IMAGE = "consul_client_source_image"
VAR_SERVER_CLUSTER_SIZE = "consul_server_cluster_size"
VAR_CLIENT_CLUSTER_SIZE = "consul_client_cluster_size"
VAR_ALLOWED_CIDR_HTTP_API = "allowed_inbound_cidr_blocks_http_api"
VAR_ALLOWED_CIDR_DNS = "allowed_inbound_cidr_blocks_dns"

# Terraform outputs
OUTPUT_SERVER_GROUP_NAME = "instance_group_name"
OUTPUT_CLIENT_GROUP_NAME = "client_instance_group_name"

DEFAULT_NUM_SERVERS = 3
DEFAULT_NUM_CLIENTS = 4

# Workspace keys
SAVED_GCP_ZONE = "GCPZone"


@dataclass
class ClusterExample:
    """One example configuration to put through the scenario."""
    name: str
    examples_folder: str
    packer_template_path: str
    packer_build_name: str
    num_servers: int = DEFAULT_NUM_SERVERS
    num_clients: int = DEFAULT_NUM_CLIENTS

    @property
    def expected_members(self) -> int:
        return expected_member_count(self.num_servers, self.num_clients)


# Example configurations exercised by the e2e suite and run_cluster_test.py
EXAMPLES: Dict[str, ClusterExample] = {
    example.name: example for example in (
        ClusterExample(
            name="consul-cluster-ubuntu-16",
            examples_folder=".",
            packer_template_path="examples/consul-image/consul.json",
            packer_build_name="ubuntu-16-image",
        ),
        ClusterExample(
            name="consul-cluster-ubuntu-18",
            examples_folder=".",
            packer_template_path="examples/consul-image/consul.json",
            packer_build_name="ubuntu-18-image",
        ),
    )
}


@dataclass
class DeployArtifacts:
    """What deploy leaves behind for validate and teardown, possibly in a later invocation."""
    image_id: str
    terraform_options: TerraformOptions

    def save(self, workspace: Workspace):
        workspace.save_artifact_id(self.image_id)
        workspace.save_terraform_options(self.terraform_options)

    @classmethod
    def load(cls, workspace: Workspace) -> "DeployArtifacts":
        return cls(
            image_id=workspace.load_artifact_id(),
            terraform_options=workspace.load_terraform_options(),
        )


@dataclass
class Toolchain:
    """External collaborators. Tests swap in fakes."""
    packer: Any = field(default_factory=Packer)
    terraform: Any = field(default_factory=Terraform)
    cloud_factory: Callable[[str], Any] = GoogleCloud
    client_factory: Callable[[str], Any] = ConsulClient
    sleep: Callable[[float], None] = time.sleep
    rng: Any = random
    instance_group_policy: RetryPolicy = INSTANCE_GROUP_POLICY
    convergence_policy: RetryPolicy = CONVERGENCE_POLICY


@dataclass
class TestContext:
    """State of one test execution; never shared between executions."""
    name: str
    workspace: Workspace
    config: HarnessConfig
    logger: RunLogger
    runner: StageRunner

    __test__ = False

    @classmethod
    def create(
        cls,
        name: str,
        config: HarnessConfig,
        examples_folder: str,
        logger: Optional[RunLogger] = None
    ) -> "TestContext":
        path = resolve_workspace(
            config.repo_root,
            examples_folder,
            stages=config.stages,
            workspace_dir=config.workspace_dir
        )
        if logger is None:
            output_dir = Path(config.artifacts_dir) / "logs" if config.artifacts_dir else None
            logger = RunLogger(name, "e2e", output_dir=output_dir)
        logger.info("workspace", f"Working in {path}", details={"workspace": str(path)})
        return cls(
            name=name,
            workspace=Workspace(path, namespace=name),
            config=config,
            logger=logger,
            runner=StageRunner(config.stages, logger=logger),
        )


def check_example_files(ctx: TestContext, example: ClusterExample):
    """
    Fail fast when the module under test is not where the run looks for it.

    Without this a missing template only shows up as a Packer error, and a
    folder with no .tf files applies cleanly as an empty configuration.
    """
    stages = ctx.config.stages
    if not stages.is_skipped(STAGE_SETUP_IMAGE):
        template = Path(ctx.config.repo_root) / example.packer_template_path
        if not template.is_file():
            raise ConfigError(
                f"Packer template {template} not found; "
                f"set CLUSTER_TEST_REPO_ROOT to the module under test"
            )

    uses_terraform = any(
        not stages.is_skipped(stage) for stage in (STAGE_DEPLOY, STAGE_VALIDATE, STAGE_TEARDOWN)
    )
    if uses_terraform and not any(ctx.workspace.path.glob("*.tf")):
        raise ConfigError(
            f"No Terraform configuration (*.tf) in {ctx.workspace.path}; "
            f"set CLUSTER_TEST_REPO_ROOT to the module under test"
        )


def build_terraform_options(
    workspace_path: Path,
    project_id: str,
    region: str,
    zone: str,
    image_id: str,
    run_id: str,
    num_servers: int = DEFAULT_NUM_SERVERS,
    num_clients: int = DEFAULT_NUM_CLIENTS,
    state_workspace: Optional[str] = None
) -> TerraformOptions:
    server_cluster = cluster_name("server", run_id)
    client_cluster = cluster_name("client", run_id)
    variables: Dict[str, Any] = {
        VAR_PROJECT: project_id,
        VAR_REGION: region,
        VAR_ZONE: zone,
        VAR_SERVER_CLUSTER_NAME: server_cluster,
        VAR_CLIENT_CLUSTER_NAME: client_cluster,
        VAR_SERVER_CLUSTER_TAG_NAME: server_cluster,
        VAR_CLIENT_CLUSTER_TAG_NAME: client_cluster,
        VAR_SERVER_SOURCE_IMAGE: image_id,
        VAR_CLIENT_SOURCE_IMAGE: image_id,
        VAR_SERVER_CLUSTER_SIZE: num_servers,
        VAR_CLIENT_CLUSTER_SIZE: num_clients,
        VAR_ALLOWED_CIDR_HTTP_API: ["0.0.0.0/0"],
        VAR_ALLOWED_CIDR_DNS: ["0.0.0.0/0"],
    }
    return TerraformOptions(terraform_dir=str(workspace_path), vars=variables, state_workspace=state_workspace)


def check_cluster_is_working(
    ctx: TestContext,
    tools: Toolchain,
    options: TerraformOptions,
    group_output: str,
    zone: str,
    expected_members: int
) -> str:
    """Resolve an instance of one group and wait for the cluster to converge."""
    group_name = tools.terraform.output_required(options, group_output)
    cloud = tools.cloud_factory(ctx.config.require_project_id()).in_zone(zone)

    endpoint = find_reachable_endpoint(
        group_name,
        cloud,
        policy=tools.instance_group_policy,
        rng=tools.rng,
        sleep=tools.sleep,
        logger=ctx.logger
    )
    return validate_cluster(
        endpoint,
        expected_members,
        policy=tools.convergence_policy,
        client_factory=tools.client_factory,
        sleep=tools.sleep,
        logger=ctx.logger
    )


def run_cluster_test(ctx: TestContext, example: ClusterExample, tools: Optional[Toolchain] = None) -> Dict[str, str]:
    """
    Run setup_image, deploy and validate, with teardown guaranteed.

    Returns:
        Leader observed per instance group (empty if validate was skipped)

    Raises:
        ConfigError: If the example's template or Terraform code is missing
        StageFailed: For the first stage that failed
    """
    tools = tools or Toolchain()
    workspace = ctx.workspace
    runner = ctx.runner
    leaders: Dict[str, str] = {}

    def setup_image():
        project_id = ctx.config.require_project_id()
        cloud = tools.cloud_factory(project_id)

        # A random zone exercises the code in every zone over time
        zone = cloud.random_zone(region=ctx.config.region, rng=tools.rng)
        workspace.save_string(SAVED_GCP_ZONE, zone)

        template = str(Path(ctx.config.repo_root) / example.packer_template_path)
        image_id = build_image(tools.packer, template, example.packer_build_name, project_id, zone)
        workspace.save_artifact_id(image_id)
        ctx.logger.info("image_built", f"Built image {image_id} in {zone}",
                        details={"image_id": image_id, "zone": zone})

    def destroy():
        if not workspace.has_value(KEY_TERRAFORM_OPTIONS):
            ctx.logger.info("destroy_skipped", "Nothing was deployed; skipping terraform destroy")
            return
        tools.terraform.destroy(workspace.load_terraform_options())

    def delete_image():
        image_id = workspace.load_artifact_id()
        tools.cloud_factory(ctx.config.require_project_id()).delete_image(image_id)

    def deploy() -> DeployArtifacts:
        # GCP only supports lowercase names for some resources
        run_id = unique_id().lower()
        options = build_terraform_options(
            workspace.path,
            ctx.config.require_project_id(),
            ctx.config.region,
            workspace.load_string(SAVED_GCP_ZONE),
            workspace.load_artifact_id(),
            run_id,
            num_servers=example.num_servers,
            num_clients=example.num_clients,
            # Examples sharing a folder in place must not share Terraform state
            state_workspace=ctx.name,
        )
        artifacts = DeployArtifacts(image_id=options.vars[VAR_SERVER_SOURCE_IMAGE], terraform_options=options)
        artifacts.save(workspace)
        tools.terraform.init_and_apply(options)
        return artifacts

    def validate():
        zone = workspace.load_string(SAVED_GCP_ZONE)
        options = DeployArtifacts.load(workspace).terraform_options
        for output in (OUTPUT_SERVER_GROUP_NAME, OUTPUT_CLIENT_GROUP_NAME):
            leaders[output] = check_cluster_is_working(
                ctx, tools, options, output, zone, example.expected_members
            )

    check_example_files(ctx, example)
    runner.run_stage(STAGE_SETUP_IMAGE, setup_image)

    with ClusterLifecycle(destroy, delete_image, runner=runner, logger=ctx.logger):
        runner.run_stage(STAGE_DEPLOY, deploy)
        runner.run_stage(STAGE_VALIDATE, validate)

    return leaders
