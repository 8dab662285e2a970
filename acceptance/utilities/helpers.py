"""
Test Helpers - unique naming for resource isolation.

Cloud resource names are global within a project, so every run that deploys
must stamp its names with a token no concurrent run will pick.
"""

import random
import string
from typing import Optional

# Lowercase only: GCP rejects uppercase in most resource names
UNIQUE_ID_ALPHABET = string.ascii_lowercase + string.digits
UNIQUE_ID_LENGTH = 6

_system_rng = random.SystemRandom()


def unique_id(length: int = UNIQUE_ID_LENGTH, rng: Optional[random.Random] = None) -> str:
    """Generate a short random token like "a1b2c3".

    Uses the OS entropy source unless an rng is given, so seeding the
    global random module in tests cannot make two runs collide.

    Args:
        length: Number of characters
        rng: Random instance to draw from (tests pass a seeded one)

    Returns:
        Lowercase alphanumeric token
    """
    source = rng or _system_rng
    return ''.join(source.choice(UNIQUE_ID_ALPHABET) for _ in range(length))


def cluster_name(role: str, run_id: str) -> str:
    """Name a cluster role for one run, e.g. consul-server-cluster-a1b2c3."""
    return f"consul-{role}-cluster-{run_id}".lower()
