"""Global constants and path configuration for pve-template-importer."""

from __future__ import annotations

import os
import re
from pathlib import Path

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent / "images.yaml"

TRUTHY = {"1", "true", "yes", "on"}

_LOG_VERBOSE = os.environ.get("LOG_VERBOSE", "").lower() in {"1", "true", "yes", "on"}

REDHAT_FAMILY_RE = re.compile(r"(Rocky|AlmaLinux|Fedora|CentOS|RHEL)")

# Fallback when `pvesh get /cluster/nextid` is unavailable
FALLBACK_TEMPLATE_ID = 100

DISK_FORMATS = {"raw", "qcow2"}

# Basic packages offered for virt-customize
DEBIAN_PACKAGES = (
    "qemu-guest-agent",
    "lnav",
    "ca-certificates",
    "apt-transport-https",
    "net-tools",
    "dnsutils",
)
REDHAT_PACKAGES = (
    "qemu-guest-agent",
    "lnav",
    "ca-certificates",
    "net-tools",
    "bind-utils",
)

# command -> apt package providing it
TOOL_PACKAGES = {
    "7z": "p7zip-full",
    "qemu-img": "qemu-utils",
    "virt-customize": "libguestfs-tools",
}

LIBGUESTFS_DISCLAIMER = "Installing libguestfs-tools on production systems is not advised."

UNUSED_VOLUME_RE = re.compile(r"^unused\d+$")

# qm create --name must be a DNS name
TEMPLATE_NAME_RE = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9.-]*[A-Za-z0-9])?$")

