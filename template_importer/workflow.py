"""Interactive cloud-image to Proxmox template import."""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from template_importer.archive import ArchiveNormalizer
from template_importer.catalog import is_redhat_family, load_catalog
from template_importer.constants import TEMPLATE_NAME_RE
from template_importer.customize import customize_image
from template_importer.exceptions import ImporterError
from template_importer.host import ProxmoxHost
from template_importer.models import (
    CloudInitParams,
    DownloadedArtifact,
    ImageDescriptor,
    ImporterConfig,
    ProvisioningTarget,
    ProvisionState,
)
from template_importer.packages import PackageManager
from template_importer.placement import IdentifierAllocator, select_storage
from template_importer.prompts import Prompter
from template_importer.provisioner import Provisioner
from template_importer.utils import (
    default_template_name,
    download_file_with_retry,
    ensure_directory,
    log,
)


class ImportWorkflow:
    """Runs the import top to bottom; every stage hands its result to the next."""

    def __init__(
        self,
        cfg: ImporterConfig,
        prompter: Optional[Prompter] = None,
        host: Optional[ProxmoxHost] = None,
        packages: Optional[PackageManager] = None,
    ) -> None:
        self.cfg = cfg
        self.prompter = prompter or Prompter()
        self.host = host or ProxmoxHost()
        self.packages = packages or PackageManager(self.prompter)
        self.allocator = IdentifierAllocator(self.host, self.prompter, retry_limit=cfg.id_retry_limit)
        self.normalizer = ArchiveNormalizer(self.packages, convert_raw=cfg.convert_raw)
        self.provisioner = Provisioner(self.host, self.allocator, cfg)

    def choose_image(self, catalog: List[ImageDescriptor]) -> ImageDescriptor:
        if not catalog:
            raise ImporterError("The image catalog is empty")
        index = self.prompter.choose(
            "Select a cloud image template to download:",
            [image.display_name for image in catalog],
        )
        if index is None:
            raise ImporterError("Invalid option")
        image = catalog[index]
        log("SUCCESS", f"Selected: {image.display_name}")
        return image

    def download(self, image: ImageDescriptor, work_dir: Path) -> DownloadedArtifact:
        destination = work_dir / image.file_name
        log("INFO", f"Downloading {image.file_name} into {work_dir}...")
        download_file_with_retry(
            image.source_url,
            destination,
            label="Downloading cloud image",
            retries=self.cfg.download_retries,
        )
        image_path, disk_format = self.normalizer.normalize(
            destination,
            work_dir,
            layout=image.archive_layout,
            member=image.archive_member,
        )
        return DownloadedArtifact(
            local_path=image_path,
            format=disk_format,
            is_redhat_family=is_redhat_family(image),
            is_desktop_variant=image.is_desktop,
        )

    def ask_template_name(self, default: str) -> str:
        """Re-prompt until the name is one `qm create --name` accepts."""
        while True:
            name = self.prompter.ask("Enter TEMPLATE NAME", default) or default
            if TEMPLATE_NAME_RE.match(name):
                return name
            log(
                "WARN",
                f"'{name}' is not a valid VM name. Use letters, digits, '.' and '-', "
                "starting and ending with a letter or digit.",
            )

    def collect_target(self, image: ImageDescriptor, storage: str) -> ProvisioningTarget:
        log("INFO", "Template settings")
        if image.is_desktop and image.default_name:
            name_default = image.default_name
        else:
            name_default = default_template_name(image.display_name)
        template_name = self.ask_template_name(name_default)

        if image.is_desktop and image.default_id is not None:
            id_default = image.default_id
        else:
            id_default = self.allocator.suggest()
        requested = self.prompter.ask_int("Enter VM TEMPLATE ID", default=id_default, min_val=0)
        template_id = self.allocator.resolve(requested)

        cloud_init: Optional[CloudInitParams] = None
        if not image.is_desktop:
            user = self.prompter.ask("Enter VM USER", self.cfg.default_vm_user) or self.cfg.default_vm_user
            password = self.prompter.ask_secret("Enter VM Password")
            cloud_init = CloudInitParams(
                user=user,
                password=password,
                dns1=self.prompter.ask("Enter DNS1", self.cfg.default_dns1),
                dns2=self.prompter.ask("Enter DNS2", self.cfg.default_dns2),
                search_domain=self.prompter.ask("Enter DNS Search Domain", self.cfg.default_search_domain),
            )
        enable_efi = self.prompter.confirm("Enable EFI?", default=False)
        log("INFO", f"Using VM ID {template_id}")
        return ProvisioningTarget(
            template_id=template_id,
            template_name=template_name,
            storage_backend=storage,
            enable_efi=enable_efi,
            cloud_init=cloud_init,
        )

    def _make_work_dir(self) -> Path:
        parent = self.cfg.work_dir
        if parent is not None:
            ensure_directory(parent)
        return Path(tempfile.mkdtemp(prefix="pve-template-", dir=parent))

    def run(self) -> ProvisionState:
        log("INFO", "Starting Proxmox cloud-init template import...")
        catalog = load_catalog(self.cfg.catalog_path)
        image = self.choose_image(catalog)

        work_dir = self._make_work_dir()
        try:
            artifact = self.download(image, work_dir)
            customize_image(artifact, self.packages, self.prompter, self.cfg.customize_packages)
            storage = select_storage(self.host, self.prompter, self.cfg.default_storage)
            target = self.collect_target(image, storage)
            return self.provisioner.provision(artifact, target)
        finally:
            if self.cfg.keep_download:
                log("INFO", f"Keeping downloaded files in {work_dir}")
            else:
                shutil.rmtree(work_dir, ignore_errors=True)
