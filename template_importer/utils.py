"""Utility functions for pve-template-importer."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import Callable, List, Optional, TypeVar
from urllib.request import urlopen, Request
from urllib.error import URLError, HTTPError

try:
    import bcrypt  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("bcrypt is required but not installed") from exc

from template_importer.constants import (
    _LOG_VERBOSE,
    TRUTHY,
)
from template_importer.exceptions import ExternalToolFailure, ImporterError

T = TypeVar("T")


def log(level: str, message: str) -> None:
    """Lightweight structured logging with a coloured level prefix."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    stream = sys.stderr if level == "ERROR" else sys.stdout
    print(f"{colour}[{level}]{reset} {message}", file=stream, flush=True)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


def parse_int_env(name: str, default: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = int(raw)
    except ValueError:
        raise ImporterError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise ImporterError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise ImporterError(f"{name} must be <= {max_val} (got {value})")
    return value


def parse_float_env(name: str, default: str, min_val: float = 0.0) -> float:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = float(raw)
    except ValueError:
        raise ImporterError(f"{name} must be a number (got '{raw}')")
    if value < min_val:
        raise ImporterError(f"{name} must be >= {min_val} (got {value})")
    return value


def download_file(url: str, destination: Path, label: str = "Downloading") -> None:
    """Download a file with a progress bar using Python urllib."""
    log("INFO", f"{label}: {url}")
    req = Request(url, headers={"User-Agent": "pve-template-importer/1.0"})
    try:
        response = urlopen(req, timeout=60)
    except HTTPError as exc:
        raise ExternalToolFailure("download", f"HTTP error downloading {url}: {exc.code} {exc.reason}")
    except URLError as exc:
        raise ExternalToolFailure("download", f"Failed to download {url}: {exc.reason}")

    total = response.headers.get("Content-Length")
    total_bytes = int(total) if total else None
    downloaded = 0
    start_time = time.time()

    with response, tempfile.NamedTemporaryFile(delete=False, dir=destination.parent) as tmp:
        tmp_path = Path(tmp.name)
        try:
            chunk_size = 1024 * 256  # 256 KiB
            while True:
                chunk = response.read(chunk_size)
                if not chunk:
                    break
                tmp.write(chunk)
                downloaded += len(chunk)

                elapsed = time.time() - start_time
                speed = downloaded / elapsed if elapsed > 0 else 0
                downloaded_mb = downloaded / (1024 * 1024)

                if total_bytes:
                    total_mb = total_bytes / (1024 * 1024)
                    pct = downloaded * 100 / total_bytes
                    remaining = (total_bytes - downloaded) / speed if speed > 0 else 0
                    eta_str = time.strftime("%M:%S", time.gmtime(remaining))
                    bar_len = 30
                    filled = int(bar_len * downloaded / total_bytes)
                    bar = "#" * filled + "-" * (bar_len - filled)
                    print(
                        f"\r  [{bar}] {pct:5.1f}% {downloaded_mb:.1f}/{total_mb:.1f} MiB "
                        f"({speed / (1024 * 1024):.1f} MiB/s, ETA {eta_str})",
                        end="", flush=True,
                    )
                else:
                    print(
                        f"\r  {downloaded_mb:.1f} MiB downloaded "
                        f"({speed / (1024 * 1024):.1f} MiB/s)",
                        end="", flush=True,
                    )
            print(flush=True)  # newline after progress
        except OSError as exc:
            tmp_path.unlink(missing_ok=True)
            raise ExternalToolFailure("download", f"Interrupted while downloading {url}: {exc}")
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise
    tmp_path.replace(destination)
    elapsed = time.time() - start_time
    final_mb = downloaded / (1024 * 1024)
    log("SUCCESS", f"Downloaded {final_mb:.1f} MiB in {elapsed:.1f}s")


def download_file_with_retry(url: str, destination: Path, label: str = "Downloading", retries: int = 3) -> None:
    """Retry download_file with linear backoff; re-raise the last failure."""
    for attempt in range(1, retries + 1):
        try:
            download_file(url, destination, label=label)
            return
        except ExternalToolFailure as exc:
            if attempt >= retries:
                raise
            wait = 5 * attempt
            log("WARN", f"Download attempt {attempt}/{retries} failed ({exc}); retrying in {wait}s")
            time.sleep(wait)


def has_controlling_tty() -> bool:
    """Return True if both stdin and stdout are attached to a TTY."""
    for stream in (sys.stdin, sys.stdout):
        try:
            if not stream.isatty():
                return False
        except (AttributeError, ValueError):
            return False
    return True


def poll_until(probe: Callable[[], Optional[T]], timeout: float, interval: float) -> Optional[T]:
    """Call probe until it returns a non-None value or the timeout elapses."""
    deadline = time.time() + timeout
    while True:
        result = probe()
        if result is not None:
            return result
        if time.time() >= deadline:
            return None
        time.sleep(interval)


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def hash_password(password: str) -> str:
    """Generate a bcrypt hash for cloud-init.

    Proxmox passes `$2a$`/`$2y$` hashes through untouched but re-hashes `$2b$`.
    """
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(prefix=b"2a"))
    return hashed.decode("utf-8")


def default_template_name(display_name: str) -> str:
    """'Debian 12 Bookworm' -> 'debian-12-bookworm-template'."""
    slug = re.sub(r"\s+", "-", display_name.strip().lower())
    slug = re.sub(r"[^0-9a-z.-]", "", slug).strip("-")
    return f"{slug}-template"


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def describe_directory(path: Path) -> str:
    """One entry per line, relative to path; used in extraction diagnostics."""
    if not path.exists():
        return f"  <{path} does not exist>"
    entries = sorted(str(p.relative_to(path)) for p in path.rglob("*"))
    if not entries:
        return "  <empty>"
    return "\n".join(f"  {entry}" for entry in entries)


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
