"""Storage and VM identifier selection."""

from __future__ import annotations

from typing import Callable, Dict, Optional, Set

from template_importer.constants import FALLBACK_TEMPLATE_ID
from template_importer.exceptions import ExternalToolFailure, ResourceConflict
from template_importer.host import ProxmoxHost
from template_importer.models import ProvisioningTarget
from template_importer.prompts import Prompter
from template_importer.utils import log


def select_storage(host: ProxmoxHost, prompter: Prompter, default_storage: str) -> str:
    log("INFO", "Select a storage for the template disk image (storages accepting VM images):")
    backends = host.list_backends(content="images")
    if backends is None:
        log("WARN", "pvesm command not found. Please enter storage manually.")
        return prompter.ask("Enter STORAGE", default_storage) or default_storage
    if not backends:
        log("WARN", "No storages supporting VM images were reported. Please enter storage manually.")
        return prompter.ask("Enter STORAGE", default_storage) or default_storage

    index = prompter.choose("Available storages:", backends)
    if index is None:
        log("WARN", f"Invalid selection. Using default storage '{default_storage}'.")
        return default_storage
    storage = backends[index]
    log("SUCCESS", f"Selected storage: {storage}")
    return storage


class IdentifierAllocator:
    """Optimistic VM identifier allocation.

    Proxmox has no reservation API, so an identifier that looked free can be
    taken by another actor before `qm create` runs. A failed create marks the
    identifier as taken and the operator picks again, up to ``retry_limit``
    retries (0 means no limit).
    """

    def __init__(self, host: ProxmoxHost, prompter: Prompter, retry_limit: int = 10) -> None:
        self.host = host
        self.prompter = prompter
        self.retry_limit = retry_limit
        self._failed: Set[int] = set()

    def _taken(self) -> Set[int]:
        return self.host.list_identifiers() | self._failed

    def suggest(self, taken: Optional[Set[int]] = None) -> int:
        suggestion = self.host.next_free_identifier()
        if suggestion is None:
            suggestion = FALLBACK_TEMPLATE_ID
        if taken:
            while suggestion in taken:
                suggestion += 1
        return suggestion

    def _check(self, candidate: int, taken: Set[int]) -> int:
        if candidate in taken:
            raise ResourceConflict(candidate)
        return candidate

    def resolve(self, requested: Optional[int] = None) -> int:
        """Return an identifier absent from the live host list."""
        candidate = requested if requested is not None else self.suggest()
        while True:
            taken = self._taken()
            try:
                return self._check(candidate, taken)
            except ResourceConflict as exc:
                log("WARN", f"{exc}. Please choose another.")
                candidate = self.prompter.ask_int("Enter VM TEMPLATE ID", default=self.suggest(taken), min_val=0)

    def create(
        self,
        target: ProvisioningTarget,
        build_params: Callable[[ProvisioningTarget], Dict[str, str]],
    ) -> int:
        """Run `qm create`, re-resolving the identifier after each failure."""
        attempts = 0
        while True:
            attempts += 1
            try:
                self.host.create(target.template_id, build_params(target))
            except ExternalToolFailure as exc:
                self._failed.add(target.template_id)
                log("WARN", f"Creating VM {target.template_id} failed ({exc}); treating the ID as taken.")
                if self.retry_limit and attempts > self.retry_limit:
                    raise ExternalToolFailure(
                        "create",
                        f"gave up after {attempts} attempts (ID_RETRY_LIMIT={self.retry_limit})",
                    )
                requested = self.prompter.ask_int(
                    "Enter VM TEMPLATE ID", default=self.suggest(self._taken()), min_val=0
                )
                target.template_id = self.resolve(requested)
                continue
            log("SUCCESS", f"VM {target.template_id} created after {attempts} attempt(s)")
            return target.template_id
