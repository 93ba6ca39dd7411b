"""Template provisioning: create -> import disk -> attach -> cloud-init -> template."""

from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from template_importer.constants import UNUSED_VOLUME_RE
from template_importer.exceptions import ExternalToolFailure, ImporterError
from template_importer.host import ProxmoxHost
from template_importer.models import (
    DownloadedArtifact,
    ImporterConfig,
    ProvisioningTarget,
    ProvisionState,
)
from template_importer.placement import IdentifierAllocator
from template_importer.utils import hash_password, log, poll_until

_NEXT_STATES = {
    ProvisionState.NO_VM: {ProvisionState.SHELL_CREATED},
    ProvisionState.SHELL_CREATED: {ProvisionState.DISK_IMPORTED},
    ProvisionState.DISK_IMPORTED: {ProvisionState.DISK_ATTACHED},
    ProvisionState.DISK_ATTACHED: {ProvisionState.CONFIGURED, ProvisionState.TEMPLATE},
    ProvisionState.CONFIGURED: {ProvisionState.TEMPLATE},
    ProvisionState.TEMPLATE: set(),
}


class Provisioner:
    def __init__(self, host: ProxmoxHost, allocator: IdentifierAllocator, config: ImporterConfig) -> None:
        self.host = host
        self.allocator = allocator
        self.cfg = config
        self.state = ProvisionState.NO_VM
        self.transitions: List[Tuple[ProvisionState, ProvisionState]] = []

    def _advance(self, new_state: ProvisionState) -> None:
        if new_state not in _NEXT_STATES[self.state]:
            raise ImporterError(f"Invalid provisioning transition {self.state.value} -> {new_state.value}")
        self.transitions.append((self.state, new_state))
        log("DEBUG", f"Provisioning state: {self.state.value} -> {new_state.value}")
        self.state = new_state

    # -- parameter sets --------------------------------------------------

    def create_params(self, target: ProvisioningTarget, desktop: bool) -> Dict[str, str]:
        params: Dict[str, str] = {
            "name": target.template_name,
            "cores": str(self.cfg.template_cores),
            "memory": str(self.cfg.template_memory_mb),
            "net0": f"virtio,bridge={self.cfg.template_bridge}",
        }
        if desktop:
            params["vga"] = "std"
            params["tablet"] = "1"
        else:
            params["ide2"] = f"{target.storage_backend}:cloudinit"
            params["serial0"] = "socket"
            params["vga"] = "serial0"
            params["tablet"] = "0"
        params["onboot"] = "1"
        params["agent"] = "1,fstrim_cloned_disks=1"
        params["ostype"] = "l26"
        if target.enable_efi:
            params["bios"] = "ovmf"
            params["efidisk0"] = f"{target.storage_backend}:1,efitype=4m,pre-enrolled-keys=0"
        return params

    @staticmethod
    def attach_params(volume: str) -> Dict[str, str]:
        return {
            "scsihw": "virtio-scsi-pci",
            "scsi0": f"{volume},discard=on,ssd=1",
            "boot": "order=scsi0",
            "bootdisk": "scsi0",
        }

    def cloud_init_params(self, target: ProvisioningTarget) -> Dict[str, str]:
        ci = target.cloud_init
        if ci is None:
            raise ImporterError("Cloud-init parameters are required for cloud images")
        params: Dict[str, str] = {}
        nameservers = " ".join(server for server in (ci.dns1, ci.dns2) if server)
        if nameservers:
            params["nameserver"] = nameservers
        if ci.search_domain:
            params["searchdomain"] = ci.search_domain
        params["ipconfig0"] = "ip=dhcp"
        params["ciuser"] = ci.user
        if ci.password:
            params["cipassword"] = hash_password(ci.password) if self.cfg.hash_password else ci.password
        else:
            log("WARN", "No VM password given; cloud-init password login stays disabled")
        return params

    # -- steps -------------------------------------------------------------

    def _find_imported_volume(self, vmid: int) -> Optional[str]:
        config = self.host.config(vmid)
        if not config:
            return None
        slots = sorted((int(key[len("unused"):]), key) for key in config if UNUSED_VOLUME_RE.match(key))
        if not slots:
            return None
        return config[slots[0][1]].split(",", 1)[0]

    def wait_for_imported_volume(self, vmid: int) -> str:
        volume = poll_until(
            lambda: self._find_imported_volume(vmid),
            timeout=self.cfg.import_timeout,
            interval=self.cfg.import_poll_interval,
        )
        if volume is None:
            raise ExternalToolFailure(
                "attach disk",
                f"imported volume for VM {vmid} did not appear within {self.cfg.import_timeout:g}s",
            )
        log("DEBUG", f"Imported volume visible: {volume}")
        return volume

    def provision(self, artifact: DownloadedArtifact, target: ProvisioningTarget) -> ProvisionState:
        desktop = artifact.is_desktop_variant

        log("INFO", f"Creating VM template with ID {target.template_id} and name {target.template_name}...")
        self.allocator.create(target, lambda t: self.create_params(t, desktop))
        self._advance(ProvisionState.SHELL_CREATED)

        vmid = target.template_id
        try:
            log("INFO", "Importing disk image into VM template...")
            self.host.import_disk(vmid, artifact.local_path, target.storage_backend, artifact.format)
            self._advance(ProvisionState.DISK_IMPORTED)
            log("SUCCESS", "Disk image imported successfully")

            log("INFO", "Attaching disk to VM template...")
            volume = self.wait_for_imported_volume(vmid)
            self.host.set_attributes(vmid, self.attach_params(volume), step="attach disk")
            self._advance(ProvisionState.DISK_ATTACHED)

            if desktop:
                log("INFO", "Desktop image: skipping cloud-init configuration")
            else:
                log("INFO", "Configuring cloud-init settings for the template...")
                self.host.set_attributes(vmid, self.cloud_init_params(target), step="apply cloud-init")
                self._advance(ProvisionState.CONFIGURED)

            log("INFO", "Converting VM to template...")
            self.host.convert_to_template(vmid)
            self._advance(ProvisionState.TEMPLATE)
        except ImporterError:
            log("WARN", f"VM {vmid} left in state {self.state.value}; clean it up manually (qm destroy {vmid})")
            raise

        log("SUCCESS", f"VM template {target.template_name} ({vmid}) created successfully")
        return self.state
