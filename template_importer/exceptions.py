"""Custom exceptions for pve-template-importer."""

from __future__ import annotations

from typing import Optional


class ImporterError(RuntimeError):
    """Raised on unrecoverable configuration or runtime errors."""


class UserAbort(ImporterError):
    """The operator declined a dependency install or aborted a prompt."""


class ResourceConflict(ImporterError):
    """A VM identifier is already assigned on the host."""

    def __init__(self, vmid: int, message: Optional[str] = None) -> None:
        super().__init__(message or f"VM ID {vmid} is already taken")
        self.vmid = vmid


class ExternalToolFailure(ImporterError):
    """A download, archive tool or host command returned a failure."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step} failed: {message}")
        self.step = step


class UnrecognizedArtifact(ImporterError):
    """Archive extraction produced no file matching the expected layout."""
