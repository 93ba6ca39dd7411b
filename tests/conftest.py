"""Shared test fixtures: an in-memory Proxmox host and scripted prompts."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest

from template_importer.exceptions import ExternalToolFailure
from template_importer.host import VMEntry
from template_importer.models import ImporterConfig
from template_importer.prompts import Prompter


class FakeHost:
    """Stands in for ProxmoxHost; records every mutating call."""

    def __init__(
        self,
        identifiers: Iterable[int] = (),
        next_id: Optional[int] = 100,
        backends: Optional[List[str]] = None,
        create_failures: int = 0,
        import_creates_volume: bool = True,
    ) -> None:
        self.identifiers: Set[int] = set(identifiers)
        self.next_id = next_id
        self.backends = ["local-lvm"] if backends is None else backends
        self.create_failures = create_failures
        self.import_creates_volume = import_creates_volume
        self.calls: List[Tuple] = []
        self.configs: Dict[int, Dict[str, str]] = {}
        self.statuses: Dict[int, str] = {}
        self.interfaces: Dict[int, Optional[list]] = {}
        self.fail_steps: Set[str] = set()

    # queries
    def list_identifiers(self) -> Set[int]:
        return set(self.identifiers)

    def next_free_identifier(self) -> Optional[int]:
        if self.next_id is None:
            return None
        candidate = self.next_id
        while candidate in self.identifiers:
            candidate += 1
        return candidate

    def list_backends(self, content: str = "images") -> Optional[List[str]]:
        return self.backends

    def config(self, vmid: int) -> Optional[Dict[str, str]]:
        return self.configs.get(vmid)

    def status(self, vmid: int) -> Optional[str]:
        return self.statuses.get(vmid)

    def list_vms(self) -> List[VMEntry]:
        return [
            VMEntry(vmid, self.configs.get(vmid, {}).get("name", "-"), status)
            for vmid, status in sorted(self.statuses.items())
        ]

    def guest_interfaces(self, vmid: int) -> Optional[list]:
        return self.interfaces.get(vmid)

    # lifecycle
    def create(self, vmid: int, params: Dict[str, str]) -> None:
        self.calls.append(("create", vmid, dict(params)))
        if self.create_failures > 0:
            self.create_failures -= 1
            self.identifiers.add(vmid)  # someone else grabbed it
            raise ExternalToolFailure("create", f"VM {vmid} already exists")
        self.identifiers.add(vmid)
        self.configs[vmid] = {"name": params.get("name", "")}

    def import_disk(self, vmid: int, path: Path, storage: str, disk_format: str) -> None:
        self.calls.append(("import_disk", vmid, Path(path), storage, disk_format))
        if "import disk" in self.fail_steps:
            raise ExternalToolFailure("import disk", "storage full")
        if self.import_creates_volume:
            self.configs[vmid]["unused0"] = f"{storage}:vm-{vmid}-disk-0"

    def set_attributes(self, vmid: int, attrs: Dict[str, str], step: str = "set attributes") -> None:
        self.calls.append(("set", vmid, dict(attrs)))
        if step in self.fail_steps:
            raise ExternalToolFailure(step, "qm set failed")

    def convert_to_template(self, vmid: int) -> None:
        self.calls.append(("template", vmid))
        if "convert to template" in self.fail_steps:
            raise ExternalToolFailure("convert to template", "locked")

    def calls_named(self, name: str) -> List[Tuple]:
        return [call for call in self.calls if call[0] == name]


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def make_prompter():
    """Build a Prompter answering from a fixed script; running out raises EOFError."""

    def _make(*answers: str, secrets: Iterable[str] = ()) -> Prompter:
        answer_iter = iter(answers)
        secret_iter = iter(secrets)

        def _input(_prompt: str) -> str:
            try:
                return next(answer_iter)
            except StopIteration:
                raise EOFError

        def _secret(_prompt: str) -> str:
            try:
                return next(secret_iter)
            except StopIteration:
                raise EOFError

        return Prompter(input_fn=_input, secret_fn=_secret)

    return _make


@pytest.fixture
def importer_config(tmp_path) -> ImporterConfig:
    """Return an ImporterConfig with fast polling and a temporary work dir."""
    return ImporterConfig(
        catalog_path=Path(__file__).resolve().parents[1] / "template_importer" / "images.yaml",
        work_dir=tmp_path / "work",
        keep_download=False,
        download_retries=1,
        default_storage="local-lvm",
        template_cores=2,
        template_memory_mb=2048,
        template_bridge="vmbr0",
        default_vm_user="admin",
        default_dns1="1.1.1.1",
        default_dns2="8.8.8.8",
        default_search_domain="localdomain",
        import_timeout=0.2,
        import_poll_interval=0.01,
        id_retry_limit=10,
    )


# Every variable parse_env() reads.
_PARSE_ENV_VARS = [
    "CATALOG_PATH",
    "WORK_DIR",
    "KEEP_DOWNLOAD",
    "DOWNLOAD_RETRIES",
    "DEFAULT_STORAGE",
    "TEMPLATE_CORES",
    "TEMPLATE_MEMORY",
    "TEMPLATE_BRIDGE",
    "DEFAULT_VM_USER",
    "DEFAULT_DNS1",
    "DEFAULT_DNS2",
    "DEFAULT_SEARCH_DOMAIN",
    "IMPORT_TIMEOUT",
    "IMPORT_POLL_INTERVAL",
    "ID_RETRY_LIMIT",
    "CONVERT_RAW",
    "HASH_PASSWORD",
    "EXTRA_PACKAGES",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Clear all environment variables that parse_env() reads."""
    for key in _PARSE_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
