"""
Membership Resolver

Finds an address to talk to the cluster through. A managed instance group
can take a few minutes to scale up from zero, so an empty group is treated as
"not yet" rather than as an error.
"""

import random
import time
from typing import Callable, Optional

from .convergence import ClusterEndpoint, DEFAULT_CLUSTER_PORT
from .wait import RetryPolicy, Success, Failure, do_with_retry

# 30 x 5s: managed instance groups take a couple of minutes to boot
INSTANCE_GROUP_POLICY = RetryPolicy(max_attempts=30, interval=5.0)


def find_reachable_endpoint(
    group_name: str,
    cloud,
    policy: RetryPolicy = INSTANCE_GROUP_POLICY,
    port: int = DEFAULT_CLUSTER_PORT,
    rng=random,
    sleep: Callable[[float], None] = time.sleep,
    logger=None
) -> ClusterEndpoint:
    """
    Wait until the group has a reachable instance and return one at random.

    Args:
        group_name: Name of the instance group
        cloud: Collaborator exposing public_ips(group_name) -> list of addresses
        policy: Retry budget
        port: Cluster query port to pair with the address
        rng: Source of the random choice among reachable instances

    Returns:
        ClusterEndpoint for one reachable instance

    Raises:
        RetryExhausted: If the group never had a reachable instance
    """
    def check():
        ips = list(cloud.public_ips(group_name))
        if not ips:
            return Failure(f"Instance group {group_name} has no reachable instances yet")
        return Success(rng.choice(ips))

    address = do_with_retry(
        f"Waiting for instances in group {group_name}",
        policy,
        check,
        sleep=sleep,
        logger=logger
    )
    endpoint = ClusterEndpoint(address, port)
    if logger:
        logger.cluster_event("endpoint_found", f"Using {endpoint} from group {group_name}",
                             group=group_name, address=address)
    return endpoint
