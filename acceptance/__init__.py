"""
Consul Cluster Acceptance Harness

Builds, deploys and validates a Consul cluster on Google Cloud, then tears it
down whatever the outcome.
"""

__version__ = "0.1.0"
