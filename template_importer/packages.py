"""Host package manager (apt) for missing archive and image tools."""

from __future__ import annotations

import subprocess
from typing import Optional

from template_importer.exceptions import ExternalToolFailure, UserAbort
from template_importer.prompts import Prompter
from template_importer.utils import command_exists, log, run


class PackageManager:
    def __init__(self, prompter: Prompter) -> None:
        self.prompter = prompter
        self._updated = False

    def is_installed(self, command: str) -> bool:
        return command_exists(command)

    def install(self, package: str) -> None:
        try:
            if not self._updated:
                run(["apt-get", "update"])
                self._updated = True
            run(["apt-get", "install", "-y", package])
        except (subprocess.CalledProcessError, FileNotFoundError) as exc:
            raise ExternalToolFailure(f"install {package}", str(exc))

    def ensure(self, command: str, package: str, purpose: str, disclaimer: Optional[str] = None) -> None:
        """Make sure `command` exists, installing `package` after confirmation.

        Raises UserAbort when the operator declines; callers decide whether
        that is fatal for their feature.
        """
        if self.is_installed(command):
            log("DEBUG", f"{command} is available")
            return
        log("WARN", f"{command} not found; it is needed for {purpose}.")
        if disclaimer:
            log("WARN", f"DISCLAIMER: {disclaimer}")
        if not self.prompter.confirm(f"Install {package}?", default=False):
            raise UserAbort(f"{command} is required for {purpose} and installation of {package} was declined")
        log("INFO", f"Installing {package}...")
        self.install(package)
        if not self.is_installed(command):
            raise ExternalToolFailure(f"install {package}", f"{command} still not found after installation")
        log("SUCCESS", f"{package} installed")
