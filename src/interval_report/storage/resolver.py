from __future__ import annotations

import errno
import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from filelock import FileLock, Timeout

from interval_report.errors import StorageError
from interval_report.period import validate_period_key

logger = logging.getLogger(__name__)

LOCKS_DIRNAME = ".locks"


@dataclass(frozen=True)
class StoredArtifactLocation:
    base_path: Path
    period_folder: str
    file_name: str
    full_path: Path


@dataclass(frozen=True)
class PlacementResult:
    location: StoredArtifactLocation
    replaced: bool
    bytes_written: int


def render_file_name(file_name_template: str, **fields: Any) -> str:
    try:
        name = file_name_template.format(**fields)
    except (KeyError, IndexError, ValueError) as exc:
        raise ValueError(f"invalid file name template {file_name_template!r}: {exc}") from exc
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        raise ValueError(f"file name template produced an invalid name: {name!r}")
    return name


def _storage_error(exc: OSError, *, action: str, path: Path) -> StorageError:
    if isinstance(exc, PermissionError):
        kind = "permission"
    elif isinstance(exc, FileNotFoundError):
        kind = "path_not_found"
    else:
        kind = "io"
    detail = errno.errorcode.get(exc.errno, str(exc.errno)) if exc.errno else None
    return StorageError(f"{action} failed for {path}: {exc}", kind=kind, detail=detail)


def resolve(
    base_path: Path,
    period_key: str,
    file_name_template: str,
    **fields: Any,
) -> StoredArtifactLocation:
    """Compute {base_path}/{period_key}/{file_name} and create the folder if missing.

    `period` is always available to the file name template in addition to
    `fields`. Folder creation is idempotent.
    """

    validate_period_key(period_key)
    file_name = render_file_name(file_name_template, period=period_key, **fields)

    folder = base_path / period_key
    try:
        folder.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise _storage_error(exc, action="create folder", path=folder) from exc

    return StoredArtifactLocation(
        base_path=base_path,
        period_folder=period_key,
        file_name=file_name,
        full_path=folder / file_name,
    )


def lock_path_for(location: StoredArtifactLocation) -> Path:
    """Lock file keyed on the resolved full path, kept outside the period folder."""

    digest = hashlib.sha1(str(location.full_path.resolve()).encode("utf-8")).hexdigest()[:16]
    return location.base_path / LOCKS_DIRNAME / f"{digest}.lock"


def place(
    content: bytes,
    location: StoredArtifactLocation,
    *,
    lock_timeout_s: float = 30.0,
) -> PlacementResult:
    """Write `content` to location.full_path, replacing any earlier artifact.

    Writes a temp file next to the target, then os.replace()s it over the
    target, all under a lock keyed on the target path. The target is either
    the previous artifact or the complete new one, never a truncated file;
    the temp file is removed on failure.
    """

    target = location.full_path
    lock_path = lock_path_for(location)
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise _storage_error(exc, action="create lock folder", path=lock_path.parent) from exc

    tmp_path = target.with_name(f".{target.name}.tmp")

    try:
        with FileLock(str(lock_path), timeout=lock_timeout_s):
            replaced = target.exists()
            try:
                with tmp_path.open("wb") as f:
                    f.write(content)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, target)
            except OSError as exc:
                _discard(tmp_path)
                raise _storage_error(exc, action="write artifact", path=target) from exc
    except Timeout as exc:
        raise StorageError(f"artifact path is locked by another run: {target}", kind="locked") from exc

    logger.info("Placed artifact %s (%d bytes, replaced=%s)", target, len(content), replaced)
    return PlacementResult(location=location, replaced=replaced, bytes_written=len(content))


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        logger.warning("Could not remove temp file %s", path)
