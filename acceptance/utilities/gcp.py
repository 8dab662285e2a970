"""
Google Cloud adapter built on the gcloud CLI (--format=json).

Covers the few cloud calls an acceptance run makes: choosing a zone, listing
the public IPs of a managed instance group, and deleting a built image.
"""

import json
import random
from typing import Any, List, Optional, Sequence

from .process import run_tool

GCLOUD_BINARY = "gcloud"


class GoogleCloud:
    def __init__(self, project_id: str, zone: Optional[str] = None, binary: str = GCLOUD_BINARY, runner=run_tool):
        self.project_id = project_id
        self.zone = zone
        self.binary = binary
        self._run = runner

    def _gcloud_json(self, *args: str) -> Any:
        cmd = [self.binary, *args, f"--project={self.project_id}", "--format=json", "--quiet"]
        result = self._run(cmd, timeout=120, heartbeat_interval=60)
        return json.loads(result.stdout or "null")

    def in_zone(self, zone: str) -> "GoogleCloud":
        """Same project, bound to a zone."""
        return GoogleCloud(self.project_id, zone, self.binary, self._run)

    def _require_zone(self) -> str:
        if not self.zone:
            raise ValueError("GoogleCloud client has no zone; use in_zone() first")
        return self.zone

    def list_zones(self, region: Optional[str] = None) -> List[str]:
        """Names of zones that are UP, optionally limited to one region."""
        zones = self._gcloud_json("compute", "zones", "list") or []
        names = []
        for zone in zones:
            if zone.get("status") != "UP":
                continue
            # region is a URL ending in /regions/<name>
            zone_region = str(zone.get("region", "")).rsplit("/", 1)[-1]
            if region and zone_region != region:
                continue
            names.append(zone["name"])
        return sorted(names)

    def random_zone(
        self,
        region: Optional[str] = None,
        forbidden: Sequence[str] = (),
        rng=random
    ) -> str:
        """Pick a zone at random so the code under test gets exercised everywhere."""
        candidates = [z for z in self.list_zones(region) if z not in forbidden]
        if not candidates:
            raise ValueError(f"No usable zones in project {self.project_id} (region={region})")
        return rng.choice(candidates)

    def instance_names(self, group_name: str) -> List[str]:
        """Names of RUNNING instances in a managed instance group."""
        entries = self._gcloud_json(
            "compute", "instance-groups", "list-instances", group_name,
            f"--zone={self._require_zone()}"
        ) or []
        names = []
        for entry in entries:
            if entry.get("status", "RUNNING") != "RUNNING":
                continue
            instance = entry.get("instance", "")
            names.append(instance.rsplit("/", 1)[-1])
        return names

    def public_ip(self, instance_name: str) -> Optional[str]:
        instance = self._gcloud_json(
            "compute", "instances", "describe", instance_name,
            f"--zone={self._require_zone()}"
        ) or {}
        for interface in instance.get("networkInterfaces", []):
            for access in interface.get("accessConfigs", []):
                if access.get("natIP"):
                    return access["natIP"]
        return None

    def public_ips(self, group_name: str) -> List[str]:
        """Public IPs of every running instance in the group that has one."""
        ips = []
        for name in self.instance_names(group_name):
            ip = self.public_ip(name)
            if ip:
                ips.append(ip)
        return ips

    def delete_image(self, image_id: str):
        print(f"[gcp] deleting image {image_id}", flush=True)
        self._gcloud_json("compute", "images", "delete", image_id)
