#!/usr/bin/env python3
"""
Test Name: test_consul_cluster.py
Suite: e2e

Purpose:
    Builds the Consul image, deploys the example cluster into a real GCP
    project, checks that servers and clients converge on one leader, and
    tears everything down.

Requirements:
    - gcloud, terraform and packer on PATH, authenticated
    - GOOGLE_CLOUD_PROJECT_ID (or GOOGLE_CLOUD_PROJECT) set
    - CLUSTER_TEST_REPO_ROOT pointing at the module under test

Stage control:
    SKIP_setup_image=1 SKIP_deploy=1 ... skip stages; any skip makes the run
    work in the module's own folder so a later run can resume. Each example
    keeps its saved values and Terraform state apart there, so both can run
    in one session.

Determinism:
    - Zone and instance choices are random by intent
    - Resource names carry a unique id per run
"""

import pytest

from acceptance.framework.config import HarnessConfig
from acceptance.framework.logger import RunLogger
from acceptance.framework.scenario import EXAMPLES, TestContext, run_cluster_test
from acceptance.framework.stages import STAGE_VALIDATE

CONFIG = HarnessConfig.from_env()

pytestmark = [
    pytest.mark.e2e,
    pytest.mark.skipif(not CONFIG.project_id, reason="No GCP project configured"),
]


@pytest.mark.parametrize("example", list(EXAMPLES.values()), ids=lambda e: e.name)
def test_consul_cluster(example):
    output_dir = CONFIG.artifacts_dir / "logs" if CONFIG.artifacts_dir else None
    with RunLogger(example.name, "e2e", output_dir=output_dir) as logger:
        ctx = TestContext.create(example.name, CONFIG, example.examples_folder, logger=logger)
        leaders = run_cluster_test(ctx, example)

    if CONFIG.stages.is_skipped(STAGE_VALIDATE):
        assert leaders == {}
    else:
        assert all(leaders.values())
