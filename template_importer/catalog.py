"""Image catalog loading for pve-template-importer."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

try:
    import yaml  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required but not installed") from exc

from template_importer.constants import DEFAULT_CATALOG_PATH, REDHAT_FAMILY_RE
from template_importer.exceptions import ImporterError
from template_importer.models import ArchiveLayout, ImageDescriptor

VALID_VARIANTS = {"cloud", "desktop"}


def _parse_entry(key: str, entry: Any) -> ImageDescriptor:
    if not isinstance(entry, dict):
        raise ImporterError(f"Catalog entry '{key}' must be a mapping")
    for required in ("name", "url", "file"):
        if not entry.get(required):
            raise ImporterError(f"Catalog entry '{key}' is missing required field '{required}'")

    layout = ArchiveLayout.NONE
    member: Optional[str] = None
    archive = entry.get("archive")
    if archive is not None:
        if not isinstance(archive, dict):
            raise ImporterError(f"Catalog entry '{key}': 'archive' must be a mapping")
        try:
            layout = ArchiveLayout(archive.get("layout", "none"))
        except ValueError:
            supported = ", ".join(item.value for item in ArchiveLayout)
            raise ImporterError(
                f"Catalog entry '{key}': unknown archive layout '{archive.get('layout')}'. Supported: {supported}"
            )
        member = archive.get("member")
        if layout is not ArchiveLayout.NONE and not member:
            raise ImporterError(f"Catalog entry '{key}': archive layout '{layout.value}' requires 'member'")

    name = str(entry["name"])
    variant = entry.get("variant")
    if variant is None:
        variant = "desktop" if "desktop" in name.lower() else "cloud"
    variant = str(variant).lower()
    if variant not in VALID_VARIANTS:
        raise ImporterError(f"Catalog entry '{key}': variant must be one of cloud, desktop (got '{variant}')")

    default_id = entry.get("default_id")
    if default_id is not None:
        try:
            default_id = int(default_id)
        except (TypeError, ValueError):
            raise ImporterError(f"Catalog entry '{key}': default_id must be an integer")
        if default_id < 0:
            raise ImporterError(f"Catalog entry '{key}': default_id must be >= 0")

    return ImageDescriptor(
        display_name=name,
        source_url=str(entry["url"]),
        file_name=str(entry["file"]),
        archive_layout=layout,
        archive_member=member,
        variant=variant,
        default_id=default_id,
        default_name=entry.get("default_name"),
    )


def load_catalog(config_path: Optional[Path] = None) -> List[ImageDescriptor]:
    """Load the image catalog, sorted alphabetically by display name."""
    if config_path is None:
        config_path = DEFAULT_CATALOG_PATH
    if not config_path.exists():
        raise ImporterError(f"Image catalog missing: {config_path}")
    try:
        data = yaml.safe_load(config_path.read_text())
    except yaml.YAMLError as exc:
        raise ImporterError(f"Image catalog {config_path} contains invalid YAML: {exc}")
    if not isinstance(data, dict):
        raise ImporterError(f"Image catalog {config_path} must contain a mapping")
    images: Dict[str, Any] = data.get("images") or {}
    if not isinstance(images, dict):
        raise ImporterError("'images' must be a mapping")
    descriptors = [_parse_entry(key, entry) for key, entry in images.items()]
    return sorted(descriptors, key=lambda item: item.display_name)


def is_redhat_family(image: ImageDescriptor) -> bool:
    return REDHAT_FAMILY_RE.search(image.display_name) is not None
