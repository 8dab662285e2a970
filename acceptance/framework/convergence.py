"""
Convergence Validator

Decides whether a deployed cluster has converged: every expected agent has
joined and a leader has been elected. Both must be observed in the same poll
attempt; a matching member count from one attempt and a leader from another
prove nothing.
"""

import time
from dataclasses import dataclass
from typing import Callable, FrozenSet, Optional

from .wait import RetryPolicy, Success, Failure, do_with_retry
from ..utilities.consul_client import ConsulClient

DEFAULT_CLUSTER_PORT = 8500

# 60 x 10s: gossip convergence and leader election are slower than boot
CONVERGENCE_POLICY = RetryPolicy(max_attempts=60, interval=10.0)


class ClusterClientError(Exception):
    """The protocol client could not be built for an endpoint. Not retried."""

    def __init__(self, endpoint, cause: BaseException):
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(f"Failed to create cluster client for {endpoint}: {cause}")


@dataclass(frozen=True)
class ClusterEndpoint:
    address: str
    port: int = DEFAULT_CLUSTER_PORT

    def __str__(self) -> str:
        if ":" in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"

    @property
    def url(self) -> str:
        return f"http://{self}"


@dataclass(frozen=True)
class ClusterSnapshot:
    """What one poll attempt observed. Never reused across attempts."""
    members: FrozenSet[str]
    leader_id: str = ""

    @property
    def has_leader(self) -> bool:
        return bool(self.leader_id)


def expected_member_count(server_count: int, client_count: int) -> int:
    return server_count + client_count


def validate_cluster(
    endpoint: ClusterEndpoint,
    expected_members: int,
    policy: RetryPolicy = CONVERGENCE_POLICY,
    client_factory: Callable[[str], object] = ConsulClient,
    sleep: Callable[[float], None] = time.sleep,
    logger=None
) -> str:
    """
    Poll the cluster through endpoint until it has converged.

    Each attempt: fetch members, compare the count, fetch the leader, require
    it to be non-empty. Transport errors and unmet conditions are retried.

    Args:
        endpoint: Where to reach one cluster agent
        expected_members: Exact number of agents the cluster should report
        policy: Retry budget
        client_factory: Builds a client exposing members() and leader()

    Returns:
        The elected leader's identifier

    Raises:
        ClusterClientError: If the client cannot be created (malformed endpoint)
        RetryExhausted: If the cluster never converged
    """
    try:
        client = client_factory(str(endpoint))
    except Exception as e:
        raise ClusterClientError(endpoint, e) from e

    def check():
        try:
            members = list(client.members())
        except Exception as e:
            return Failure(e)

        if len(members) != expected_members:
            return Failure(
                f"Expected the cluster to have {expected_members} members, but found {len(members)}"
            )

        try:
            leader = client.leader()
        except Exception as e:
            return Failure(e)

        snapshot = ClusterSnapshot(frozenset(members), leader or "")
        if not snapshot.has_leader:
            return Failure(
                "Cluster returned an empty leader response, so a leader must not have been elected yet"
            )
        return Success(snapshot)

    snapshot = do_with_retry("Check Consul members", policy, check, sleep=sleep, logger=logger)

    if logger:
        logger.cluster_event(
            "converged",
            f"Cluster is properly deployed and has elected leader {snapshot.leader_id}",
            endpoint=str(endpoint),
            members=sorted(snapshot.members),
            leader=snapshot.leader_id
        )
    return snapshot.leader_id
