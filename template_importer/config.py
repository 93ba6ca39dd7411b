"""Environment variable parsing for pve-template-importer."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional

from template_importer.constants import DEFAULT_CATALOG_PATH
from template_importer.exceptions import ImporterError
from template_importer.models import ImporterConfig
from template_importer.utils import (
    get_env,
    get_env_bool,
    log,
    parse_float_env,
    parse_int_env,
)

_STORAGE_ID_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._-]*$")
_BRIDGE_RE = re.compile(r"^[A-Za-z][A-Za-z0-9._-]*$")


def _optional_path(name: str) -> Optional[Path]:
    raw = get_env(name)
    if raw is None or not raw.strip():
        return None
    return Path(raw.strip()).expanduser()


def parse_env() -> ImporterConfig:
    catalog_path = _optional_path("CATALOG_PATH") or DEFAULT_CATALOG_PATH

    work_dir = _optional_path("WORK_DIR")
    if work_dir is not None and work_dir.exists() and not work_dir.is_dir():
        raise ImporterError(f"WORK_DIR must point to a directory: {work_dir}")

    default_storage = (get_env("DEFAULT_STORAGE") or "local-lvm").strip()
    if not _STORAGE_ID_RE.match(default_storage):
        raise ImporterError(f"Invalid DEFAULT_STORAGE '{default_storage}'")

    bridge = (get_env("TEMPLATE_BRIDGE") or "vmbr0").strip()
    if not _BRIDGE_RE.match(bridge):
        raise ImporterError(f"Invalid TEMPLATE_BRIDGE '{bridge}'")

    import_timeout = parse_float_env("IMPORT_TIMEOUT", "60", min_val=1.0)
    poll_interval = parse_float_env("IMPORT_POLL_INTERVAL", "2", min_val=0.1)
    if poll_interval > import_timeout:
        log("WARN", "IMPORT_POLL_INTERVAL is larger than IMPORT_TIMEOUT; polling once")

    convert_raw = get_env_bool("CONVERT_RAW", True)
    if not convert_raw:
        log("INFO", "CONVERT_RAW=0: raw disks from archives are imported without conversion")

    extra_raw = get_env("EXTRA_PACKAGES") or ""
    extra_packages = [pkg.strip() for pkg in extra_raw.split(",") if pkg.strip()]

    return ImporterConfig(
        catalog_path=catalog_path,
        work_dir=work_dir,
        keep_download=get_env_bool("KEEP_DOWNLOAD", False),
        download_retries=parse_int_env("DOWNLOAD_RETRIES", "3", min_val=1, max_val=10),
        default_storage=default_storage,
        template_cores=parse_int_env("TEMPLATE_CORES", "2", min_val=1, max_val=512),
        template_memory_mb=parse_int_env("TEMPLATE_MEMORY", "2048", min_val=16),
        template_bridge=bridge,
        default_vm_user=(get_env("DEFAULT_VM_USER") or "admin").strip(),
        default_dns1=(get_env("DEFAULT_DNS1") or "1.1.1.1").strip(),
        default_dns2=(get_env("DEFAULT_DNS2") or "8.8.8.8").strip(),
        default_search_domain=(get_env("DEFAULT_SEARCH_DOMAIN") or "localdomain").strip(),
        import_timeout=import_timeout,
        import_poll_interval=poll_interval,
        id_retry_limit=parse_int_env("ID_RETRY_LIMIT", "10", min_val=0),
        convert_raw=convert_raw,
        hash_password=get_env_bool("HASH_PASSWORD", False),
        customize_packages=extra_packages,
    )
