"""Allow `python -m template_importer`."""

from template_importer.cli import main

if __name__ == "__main__":
    raise SystemExit(main())
