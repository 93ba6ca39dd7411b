"""Optional in-image package installation with virt-customize."""

from __future__ import annotations

import subprocess
from typing import List, Sequence

from template_importer.constants import (
    DEBIAN_PACKAGES,
    LIBGUESTFS_DISCLAIMER,
    REDHAT_PACKAGES,
    TOOL_PACKAGES,
)
from template_importer.exceptions import ExternalToolFailure, UserAbort
from template_importer.models import DownloadedArtifact
from template_importer.packages import PackageManager
from template_importer.prompts import Prompter
from template_importer.utils import log, run


def basic_packages(redhat_family: bool, extra: Sequence[str] = ()) -> List[str]:
    base = REDHAT_PACKAGES if redhat_family else DEBIAN_PACKAGES
    packages = list(base)
    packages.extend(pkg for pkg in extra if pkg not in packages)
    return packages


def customize_image(
    artifact: DownloadedArtifact,
    packages: PackageManager,
    prompter: Prompter,
    extra_packages: Sequence[str] = (),
) -> bool:
    """Offer to bake basic packages into the image. Never fatal.

    Returns True when the image was modified.
    """
    if artifact.is_desktop_variant:
        log("INFO", "Desktop image: skipping package customization")
        return False
    try:
        packages.ensure(
            "virt-customize",
            TOOL_PACKAGES["virt-customize"],
            "image customization",
            disclaimer=LIBGUESTFS_DISCLAIMER,
        )
    except UserAbort:
        log("WARN", "virt-customize not available. Skipping image customization.")
        return False
    except ExternalToolFailure as exc:
        log("WARN", f"{exc}. Continuing without image customization support.")
        return False

    package_list = ",".join(basic_packages(artifact.is_redhat_family, extra_packages))
    if not prompter.confirm(f"Do you want to install basic packages ({package_list}) into the image?"):
        log("INFO", "Skipping image customization.")
        return False

    log("INFO", "Customizing image with basic packages...")
    try:
        run(["virt-customize", "-a", str(artifact.local_path), "--install", package_list])
    except (subprocess.CalledProcessError, FileNotFoundError) as exc:
        log("WARN", f"Image customization failed ({exc}); continuing with the unmodified image.")
        return False
    log("SUCCESS", "Image customized successfully")
    return True
