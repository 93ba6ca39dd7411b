"""Data models for pve-template-importer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, NamedTuple, Optional


class ArchiveLayout(str, Enum):
    """Where the disk image lives inside a downloaded archive."""

    NONE = "none"
    TAR_XZ_RAW = "tar-xz-raw"  # member: relative path of the raw disk
    SEVENZ_QCOW2_GLOB = "7z-qcow2-glob"  # member: glob matching the qcow2


class ProvisionState(str, Enum):
    NO_VM = "NoVM"
    SHELL_CREATED = "ShellCreated"
    DISK_IMPORTED = "DiskImported"
    DISK_ATTACHED = "DiskAttached"
    CONFIGURED = "Configured"
    TEMPLATE = "Template"


@dataclass(frozen=True)
class ImageDescriptor:
    display_name: str
    source_url: str
    file_name: str
    archive_layout: ArchiveLayout = ArchiveLayout.NONE
    archive_member: Optional[str] = None
    variant: str = "cloud"  # "cloud" or "desktop"
    default_id: Optional[int] = None
    default_name: Optional[str] = None

    @property
    def is_desktop(self) -> bool:
        return self.variant == "desktop"


@dataclass
class DownloadedArtifact:
    local_path: Path
    format: str  # "raw" or "qcow2"
    is_redhat_family: bool
    is_desktop_variant: bool


@dataclass
class CloudInitParams:
    user: str
    password: str
    dns1: str
    dns2: str
    search_domain: str


@dataclass
class ProvisioningTarget:
    template_id: int
    template_name: str
    storage_backend: str
    enable_efi: bool = False
    cloud_init: Optional[CloudInitParams] = None


class GuestAddresses(NamedTuple):
    vmid: int
    name: Optional[str]
    addresses: str


@dataclass
class ImporterConfig:
    catalog_path: Path
    work_dir: Optional[Path]
    keep_download: bool
    download_retries: int
    default_storage: str
    template_cores: int
    template_memory_mb: int
    template_bridge: str
    default_vm_user: str
    default_dns1: str
    default_dns2: str
    default_search_domain: str
    import_timeout: float
    import_poll_interval: float
    id_retry_limit: int  # 0 = unbounded
    convert_raw: bool = True
    hash_password: bool = False
    customize_packages: List[str] = field(default_factory=list)
