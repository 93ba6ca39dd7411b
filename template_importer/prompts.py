"""Interactive operator prompts."""

from __future__ import annotations

import getpass
from typing import Callable, List, Optional, Sequence

from template_importer.exceptions import UserAbort
from template_importer.utils import log


class Prompter:
    """Reads operator answers; input functions are injectable for tests."""

    def __init__(
        self,
        input_fn: Callable[[str], str] = input,
        secret_fn: Callable[[str], str] = getpass.getpass,
    ) -> None:
        self._input = input_fn
        self._secret = secret_fn

    def _read(self, reader: Callable[[str], str], prompt: str) -> str:
        try:
            return reader(prompt)
        except EOFError:
            raise UserAbort("Input closed before all questions were answered")

    def ask(self, text: str, default: Optional[str] = None) -> str:
        suffix = f" (default: {default})" if default else ""
        answer = self._read(self._input, f"{text}{suffix}: ").strip()
        if not answer and default is not None:
            return default
        return answer

    def ask_secret(self, text: str) -> str:
        return self._read(self._secret, f"{text}: ")

    def confirm(self, text: str, default: bool = False) -> bool:
        hint = "Y/n" if default else "y/N"
        answer = self._read(self._input, f"{text} [{hint}]: ").strip().lower()
        if not answer:
            return default
        return answer in ("y", "yes")

    def ask_int(self, text: str, default: Optional[int] = None, min_val: int = 0) -> int:
        """Re-prompt until the answer is an integer >= min_val."""
        while True:
            raw = self.ask(text, str(default) if default is not None else None)
            try:
                value = int(raw)
            except ValueError:
                log("WARN", f"'{raw}' is not a valid number. Enter an integer >= {min_val}.")
                continue
            if value < min_val:
                log("WARN", f"{value} is out of range. Enter an integer >= {min_val}.")
                continue
            return value

    def choose(self, title: str, options: Sequence[str]) -> Optional[int]:
        """Show a numbered menu; return the 0-based index, or None on an invalid answer."""
        lines: List[str] = [title]
        lines.extend(f"  {idx}) {option}" for idx, option in enumerate(options, start=1))
        print("\n".join(lines), flush=True)
        raw = self._read(self._input, f"Enter choice [1-{len(options)}]: ").strip()
        try:
            choice = int(raw)
        except ValueError:
            return None
        if 1 <= choice <= len(options):
            return choice - 1
        return None
