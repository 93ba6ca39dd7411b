"""Proxmox VE host commands (qm, pvesh, pvesm)."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Set

from template_importer.exceptions import ExternalToolFailure
from template_importer.utils import command_exists, log, run


class VMEntry(NamedTuple):
    vmid: int
    name: str
    status: str


def _flatten(attrs: Dict[str, str]) -> List[str]:
    args: List[str] = []
    for key, value in attrs.items():
        args.extend([f"--{key}", str(value)])
    return args


def _error_text(result: subprocess.CompletedProcess) -> str:
    text = (result.stderr or result.stdout or "").strip()
    return text or f"exit status {result.returncode}"


class ProxmoxHost:
    """Thin wrapper over the node's management CLIs.

    Query helpers return None or empty results when a command fails;
    mutating helpers raise ExternalToolFailure.
    """

    def _exec(self, cmd: List[str]) -> subprocess.CompletedProcess:
        try:
            return run(cmd, check=False, capture_output=True)
        except FileNotFoundError as exc:
            return subprocess.CompletedProcess(args=cmd, returncode=127, stdout="", stderr=str(exc))

    def _mutate(self, step: str, cmd: List[str]) -> subprocess.CompletedProcess:
        result = self._exec(cmd)
        if result.returncode != 0:
            raise ExternalToolFailure(step, _error_text(result))
        return result

    # -- queries ---------------------------------------------------------

    def status(self, vmid: int) -> Optional[str]:
        result = self._exec(["qm", "status", str(vmid)])
        if result.returncode != 0:
            return None
        for line in result.stdout.splitlines():
            if line.startswith("status:"):
                return line.split(":", 1)[1].strip()
        return None

    def list_vms(self) -> List[VMEntry]:
        result = self._exec(["qm", "list"])
        if result.returncode != 0:
            log("WARN", f"qm list failed: {_error_text(result)}")
            return []
        entries: List[VMEntry] = []
        for line in result.stdout.splitlines()[1:]:
            parts = line.split()
            if len(parts) < 3 or not parts[0].isdigit():
                continue
            entries.append(VMEntry(vmid=int(parts[0]), name=parts[1], status=parts[2]))
        return entries

    def list_identifiers(self) -> Set[int]:
        """Identifiers assigned anywhere in the cluster, falling back to this node."""
        result = self._exec(["pvesh", "get", "/cluster/resources", "--type", "vm", "--output-format", "json"])
        if result.returncode == 0:
            try:
                resources = json.loads(result.stdout or "[]")
                return {int(item["vmid"]) for item in resources if "vmid" in item}
            except (json.JSONDecodeError, TypeError, ValueError, KeyError):
                log("DEBUG", "Could not parse cluster resources; falling back to qm list")
        return {entry.vmid for entry in self.list_vms()}

    def next_free_identifier(self) -> Optional[int]:
        result = self._exec(["pvesh", "get", "/cluster/nextid"])
        if result.returncode != 0:
            return None
        raw = result.stdout.strip().strip('"')
        try:
            return int(raw)
        except ValueError:
            return None

    def config(self, vmid: int) -> Optional[Dict[str, str]]:
        result = self._exec(["qm", "config", str(vmid)])
        if result.returncode != 0:
            return None
        values: Dict[str, str] = {}
        for line in result.stdout.splitlines():
            if ": " in line:
                key, value = line.split(": ", 1)
                values[key.strip()] = value.strip()
        return values

    def guest_interfaces(self, vmid: int) -> Optional[list]:
        result = self._exec(["qm", "guest", "cmd", str(vmid), "network-get-interfaces"])
        if result.returncode != 0:
            return None
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, list) else None

    def list_backends(self, content: str = "images") -> Optional[List[str]]:
        """Storage IDs accepting `content`; None when pvesm is not available."""
        if not command_exists("pvesm"):
            return None
        result = self._exec(["pvesm", "status", "--content", content])
        if result.returncode != 0:
            log("WARN", f"pvesm status failed: {_error_text(result)}")
            return []
        return [line.split()[0] for line in result.stdout.splitlines()[1:] if line.strip()]

    # -- lifecycle -------------------------------------------------------

    def create(self, vmid: int, params: Dict[str, str]) -> None:
        self._mutate("create", ["qm", "create", str(vmid)] + _flatten(params))

    def import_disk(self, vmid: int, path: Path, storage: str, disk_format: str) -> None:
        self._mutate(
            "import disk",
            ["qm", "importdisk", str(vmid), str(path), storage, "--format", disk_format],
        )

    def set_attributes(self, vmid: int, attrs: Dict[str, str], step: str = "set attributes") -> None:
        self._mutate(step, ["qm", "set", str(vmid)] + _flatten(attrs))

    def convert_to_template(self, vmid: int) -> None:
        self._mutate("convert to template", ["qm", "template", str(vmid)])
