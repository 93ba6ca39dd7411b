"""pve-template-importer package."""

__all__ = [
    "archive",
    "catalog",
    "cli",
    "config",
    "constants",
    "customize",
    "exceptions",
    "host",
    "models",
    "packages",
    "placement",
    "prompts",
    "provisioner",
    "utils",
    "vmtable",
    "workflow",
]
