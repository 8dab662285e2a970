#!/usr/bin/env python3
"""
Consul Client - the two read-only calls convergence checks need.

HTTP API:
- Members: GET /v1/agent/members?wan=0  -> [{"Name": ..., "Addr": ..., "Status": 1}, ...]
- Leader:  GET /v1/status/leader        -> "10.0.0.3:8300" or "" while no leader
"""

import json
import urllib.error
import urllib.request
from urllib.parse import urlsplit
from typing import Any, List

DEFAULT_PORT = 8500


class ConsulError(Exception):
    """Transport or protocol error talking to a Consul agent."""
    pass


class ConsulClient:
    def __init__(self, address: str, scheme: str = "http", timeout: float = 5.0):
        if "://" not in address:
            address = f"{scheme}://{address}"
        parts = urlsplit(address)
        try:
            port = parts.port
        except ValueError as e:
            raise ValueError(f"Invalid Consul address {address!r}: {e}") from e
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(f"Invalid Consul address {address!r}")

        host = parts.hostname
        # IPv6 literals keep their brackets
        if ":" in host:
            host = f"[{host}]"
        self.base_url = f"{parts.scheme}://{host}:{port or DEFAULT_PORT}"
        self.timeout = timeout

    def _get(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        try:
            with urllib.request.urlopen(url, timeout=self.timeout) as resp:
                body = resp.read()
        except (urllib.error.URLError, OSError) as e:
            raise ConsulError(f"GET {url} failed: {e}") from e
        try:
            return json.loads(body or b"null")
        except ValueError as e:
            raise ConsulError(f"GET {url} returned invalid JSON: {e}") from e

    def members(self, wan: bool = False) -> List[str]:
        """Names of the agents this agent knows about."""
        entries = self._get(f"/v1/agent/members?wan={1 if wan else 0}") or []
        if not isinstance(entries, list):
            raise ConsulError(f"Unexpected members response: {entries!r}")
        return [entry.get("Name") or entry.get("Addr", "") for entry in entries]

    def leader(self) -> str:
        """Address of the Raft leader, or an empty string if none is elected."""
        leader = self._get("/v1/status/leader")
        return leader or ""


if __name__ == "__main__":
    import sys

    client = ConsulClient(sys.argv[1] if len(sys.argv) > 1 else "localhost")
    members = client.members()
    print(f"{len(members)} members: {', '.join(members)}")
    print(f"leader: {client.leader() or '(none)'}")
    sys.exit(0)
