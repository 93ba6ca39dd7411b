"""Turn a downloaded cloud image into a disk image `qm importdisk` accepts."""

from __future__ import annotations

import subprocess
import tarfile
from pathlib import Path
from typing import Optional, Tuple

from template_importer.constants import TOOL_PACKAGES
from template_importer.exceptions import ExternalToolFailure, UnrecognizedArtifact
from template_importer.models import ArchiveLayout
from template_importer.packages import PackageManager
from template_importer.utils import describe_directory, log, run


class ArchiveNormalizer:
    """Extracts and converts downloads according to the catalog's archive layout.

    The result is always an existing file tagged ``raw`` or ``qcow2``; every
    other outcome raises.
    """

    def __init__(self, packages: PackageManager, convert_raw: bool = True) -> None:
        self.packages = packages
        self.convert_raw = convert_raw

    def normalize(
        self,
        path: Path,
        target_dir: Path,
        layout: ArchiveLayout = ArchiveLayout.NONE,
        member: Optional[str] = None,
    ) -> Tuple[Path, str]:
        name = path.name.lower()
        if name.endswith(".tar.xz"):
            image_path, disk_format = self._from_tar_xz(path, target_dir, layout, member)
        elif name.endswith(".7z"):
            image_path, disk_format = self._from_7z(path, target_dir, layout, member)
        elif name.endswith(".raw"):
            image_path, disk_format = self._finish_raw(path)
        else:
            image_path, disk_format = path, "qcow2"

        if not image_path.is_file():
            raise UnrecognizedArtifact(f"Normalized image {image_path} does not exist")
        log("SUCCESS", f"Disk image ready: {image_path} (format: {disk_format})")
        return image_path, disk_format

    def _from_tar_xz(
        self, path: Path, target_dir: Path, layout: ArchiveLayout, member: Optional[str]
    ) -> Tuple[Path, str]:
        log("INFO", f"Extracting tar.xz archive {path.name}...")
        try:
            with tarfile.open(path, "r:xz") as tf:
                if hasattr(tarfile, "data_filter"):
                    tf.extractall(target_dir, filter="data")
                else:  # pragma: no cover - interpreters without extraction filters
                    tf.extractall(target_dir)
        except (tarfile.TarError, OSError, EOFError) as exc:
            raise ExternalToolFailure("extract", f"Could not extract {path.name}: {exc}")

        if layout is not ArchiveLayout.TAR_XZ_RAW or not member:
            raise self._unrecognized(path, target_dir, "no raw-disk layout is declared for this archive")
        extracted = target_dir / member
        if not extracted.is_file():
            raise self._unrecognized(path, target_dir, f"expected raw disk '{member}' was not extracted")
        return self._finish_raw(extracted)

    def _from_7z(
        self, path: Path, target_dir: Path, layout: ArchiveLayout, member: Optional[str]
    ) -> Tuple[Path, str]:
        # Declining the install is fatal here: there is no other way to open the archive.
        self.packages.ensure("7z", TOOL_PACKAGES["7z"], "extracting .7z archives")
        log("INFO", f"Extracting 7z archive {path.name}...")
        try:
            run(["7z", "x", str(path), f"-o{target_dir}", "-y"], capture_output=True)
        except subprocess.CalledProcessError as exc:
            detail = (exc.stderr or exc.stdout or "").strip() or f"exit status {exc.returncode}"
            raise ExternalToolFailure("extract", f"7z could not extract {path.name}: {detail}")

        if layout is not ArchiveLayout.SEVENZ_QCOW2_GLOB or not member:
            raise self._unrecognized(path, target_dir, "no qcow2 layout is declared for this archive")
        matches = sorted(p for p in target_dir.rglob(member) if p.is_file())
        if not matches:
            raise self._unrecognized(path, target_dir, f"no extracted file matches '{member}'")
        if len(matches) > 1:
            log("WARN", f"Several files match '{member}'; using {matches[0].name}")
        return matches[0], "qcow2"

    def _finish_raw(self, raw_path: Path) -> Tuple[Path, str]:
        if not self.convert_raw:
            log("INFO", "CONVERT_RAW is disabled; importing raw disk as-is")
            return raw_path, "raw"
        return self.convert_to_qcow2(raw_path), "qcow2"

    def convert_to_qcow2(self, source: Path) -> Path:
        self.packages.ensure("qemu-img", TOOL_PACKAGES["qemu-img"], "converting raw disks to qcow2")
        destination = source.with_suffix(".qcow2")
        log("INFO", f"Converting {source.name} to qcow2...")
        try:
            run(
                ["qemu-img", "convert", "-f", "raw", "-O", "qcow2", str(source), str(destination)],
                capture_output=True,
            )
        except subprocess.CalledProcessError as exc:
            destination.unlink(missing_ok=True)
            detail = (exc.stderr or "").strip() or f"exit status {exc.returncode}"
            raise ExternalToolFailure("convert", f"qemu-img could not convert {source.name}: {detail}")
        if not destination.is_file():
            raise ExternalToolFailure("convert", f"qemu-img reported success but {destination} is missing")
        source.unlink(missing_ok=True)
        return destination

    @staticmethod
    def _unrecognized(path: Path, target_dir: Path, reason: str) -> UnrecognizedArtifact:
        return UnrecognizedArtifact(
            f"Unsupported archive {path.name}: {reason}.\n"
            f"Contents of {target_dir}:\n{describe_directory(target_dir)}"
        )
