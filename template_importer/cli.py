"""CLI entry points for pve-template-importer."""

from __future__ import annotations

import argparse
import dataclasses
from pathlib import Path
from typing import List, Optional

from template_importer.catalog import load_catalog
from template_importer.config import parse_env
from template_importer.exceptions import ImporterError
from template_importer.host import ProxmoxHost
from template_importer.models import ImporterConfig, ProvisionState
from template_importer.utils import has_controlling_tty, log
from template_importer.vmtable import print_vm_ip_table
from template_importer.workflow import ImportWorkflow


def list_images(config_path: Optional[Path] = None) -> None:
    """Print the catalog, sorted by display name."""
    catalog = load_catalog(config_path)
    if not catalog:
        log("WARN", "No images found")
        return
    width = max(len(image.display_name) for image in catalog)
    for image in catalog:
        extras = []
        if image.archive_layout.value != "none":
            extras.append(f"archive={image.archive_layout.value}")
        if image.is_desktop:
            extras.append("desktop")
        suffix = f"  ({', '.join(extras)})" if extras else ""
        print(f"  {image.display_name:<{width}}  {image.file_name}{suffix}")


def show_config(cfg: ImporterConfig) -> None:
    """Print the resolved configuration and exit."""
    for field in dataclasses.fields(cfg):
        print(f"  {field.name}: {getattr(cfg, field.name)}")


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Import a cloud image as a Proxmox VE VM template")
    parser.add_argument("--list-images", action="store_true", help="List available cloud images and exit")
    parser.add_argument("--show-config", action="store_true", help="Show resolved configuration and exit")
    parser.add_argument(
        "--vm-ips",
        action="store_true",
        help="Show running VMs with the IPv4 addresses reported by their guest agents and exit",
    )
    args = parser.parse_args(argv)

    try:
        cfg = parse_env()
    except ImporterError as exc:
        log("ERROR", str(exc))
        return 1

    if args.show_config:
        show_config(cfg)
        return 0

    if args.list_images:
        try:
            list_images(cfg.catalog_path)
        except ImporterError as exc:
            log("ERROR", str(exc))
            return 1
        return 0

    if args.vm_ips:
        print_vm_ip_table(ProxmoxHost())
        return 0

    if not has_controlling_tty():
        log("WARN", "No TTY detected; the import workflow reads answers from standard input.")

    try:
        state = ImportWorkflow(cfg).run()
    except KeyboardInterrupt:
        log("ERROR", "Interrupted")
        return 130
    except ImporterError as exc:
        log("ERROR", str(exc))
        return 1
    except Exception as exc:
        log("ERROR", f"Unexpected error: {exc}")
        import traceback

        traceback.print_exc()
        return 1

    if state is not ProvisionState.TEMPLATE:
        log("ERROR", f"Provisioning stopped in state {state.value}")
        return 1
    log("SUCCESS", "All done! Your VM template has been created.")
    return 0
