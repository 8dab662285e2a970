"""
Acceptance Harness - Test Configuration, Determinism and Fakes

Seeded randomness keeps zone and instance choices reproducible in tests, and
the fake collaborators below stand in for gcloud, Terraform, Packer and the
Consul API so the staged engine can be exercised without a cloud account.

Usage:
    from acceptance.conftest import FakeCloud, FakeConsulClient, get_seeded_random

Environment Variables:
    TEST_SEED: Master seed for all random operations (default: 42)
"""

import os
import random
from typing import Dict, List, Optional, Sequence

import pytest

from acceptance.framework.logger import RunLogger
from acceptance.utilities.consul_client import ConsulError
from acceptance.utilities.process import ToolError

# =============================================================================
# Configuration
# =============================================================================

DEFAULT_SEED = 42
MASTER_SEED = int(os.environ.get("TEST_SEED", str(DEFAULT_SEED)))


def get_seeded_random(offset: int = 0) -> random.Random:
    """A fresh Random seeded from TEST_SEED, so each test sees the same sequence."""
    return random.Random(MASTER_SEED + offset)


# =============================================================================
# Fake Collaborators
# =============================================================================

class SleepRecorder:
    """Drop-in for time.sleep that records instead of sleeping."""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float):
        self.calls.append(seconds)


class FakeConsulClient:
    """
    Replays one scripted observation per poll attempt.

    Each entry of `script` is (members, leader); members may be a list of
    names or a count. Either may be an exception instance, which is raised
    from members() / leader(). The last entry repeats once the script runs
    out. Every attempt starts with members(), so its call count is the
    attempt number.
    """

    def __init__(self, address: str, script: Sequence[tuple]):
        self.address = address
        self.script = list(script)
        self.member_calls = 0
        self.leader_calls = 0

    def _current(self):
        index = min(max(self.member_calls - 1, 0), len(self.script) - 1)
        return self.script[index]

    def members(self):
        self.member_calls += 1
        members, _ = self._current()
        if isinstance(members, Exception):
            raise members
        if isinstance(members, int):
            members = [f"node-{i}" for i in range(members)]
        return list(members)

    def leader(self):
        self.leader_calls += 1
        _, leader = self._current()
        if isinstance(leader, Exception):
            raise leader
        return leader


def consul_factory(script: Sequence[tuple]):
    """Build a client_factory that records every FakeConsulClient it creates."""
    created: List[FakeConsulClient] = []

    def factory(address: str) -> FakeConsulClient:
        client = FakeConsulClient(address, script)
        created.append(client)
        return client

    factory.created = created
    return factory


class FakeCloud:
    """
    Scripted GoogleCloud stand-in.

    `ips_by_attempt` lists what public_ips() returns on each call; the last
    entry repeats. Exceptions in the list are raised.
    """

    def __init__(self, project_id: str = "test-project", zone: Optional[str] = None,
                 ips_by_attempt: Sequence = (["10.0.0.1"],), zones: Sequence[str] = ("us-east1-b",),
                 calls: Optional[List[tuple]] = None, fail_delete: Optional[Exception] = None):
        self.project_id = project_id
        self.zone = zone
        self.ips_by_attempt = list(ips_by_attempt)
        self.zones = list(zones)
        self.calls = calls if calls is not None else []
        self.fail_delete = fail_delete
        self.public_ip_calls = 0

    def in_zone(self, zone: str) -> "FakeCloud":
        self.zone = zone
        return self

    def random_zone(self, region=None, forbidden=(), rng=random):
        self.calls.append(("random_zone", region))
        return rng.choice(self.zones)

    def public_ips(self, group_name: str):
        index = min(self.public_ip_calls, len(self.ips_by_attempt) - 1)
        self.public_ip_calls += 1
        self.calls.append(("public_ips", group_name))
        result = self.ips_by_attempt[index]
        if isinstance(result, Exception):
            raise result
        return list(result)

    def delete_image(self, image_id: str):
        self.calls.append(("delete_image", image_id))
        if self.fail_delete:
            raise self.fail_delete


class FakeTerraform:
    def __init__(self, calls: List[tuple], outputs: Optional[Dict[str, str]] = None,
                 fail_apply: Optional[Exception] = None, fail_destroy: Optional[Exception] = None):
        self.calls = calls
        self.outputs = outputs or {
            "instance_group_name": "consul-server-group",
            "client_instance_group_name": "consul-client-group",
        }
        self.fail_apply = fail_apply
        self.fail_destroy = fail_destroy

    def init_and_apply(self, options):
        self.calls.append(("apply", options.terraform_dir))
        if self.fail_apply:
            raise self.fail_apply

    def destroy(self, options):
        self.calls.append(("destroy", options.terraform_dir))
        if self.fail_destroy:
            raise self.fail_destroy

    def output_required(self, options, name: str) -> str:
        self.calls.append(("output", name))
        if name not in self.outputs:
            raise ToolError(["terraform", "output", name], 0, reason="missing output")
        return self.outputs[name]


class FakePacker:
    def __init__(self, calls: List[tuple], image_id: str = "consul-ubuntu-1234",
                 fail: Optional[Exception] = None):
        self.calls = calls
        self.image_id = image_id
        self.fail = fail

    def build_artifact(self, options) -> str:
        self.calls.append(("build", options.only, options.vars.get("zone")))
        if self.fail:
            raise self.fail
        return self.image_id


def transport_error(message: str = "connection refused") -> ConsulError:
    return ConsulError(message)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def rng():
    return get_seeded_random()


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def run_logger(tmp_path):
    logger = RunLogger("unit", "unit", output_dir=tmp_path / "logs", console_output=False)
    yield logger
    logger.close()
