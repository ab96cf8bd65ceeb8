from __future__ import annotations

import errno
from pathlib import Path

import pytest
from filelock import FileLock

from interval_report.errors import StorageError
from interval_report.storage import resolver
from interval_report.storage.resolver import lock_path_for, place, render_file_name, resolve


def test_resolve_builds_monthly_path_and_creates_folder(tmp_path: Path) -> None:
    loc = resolve(tmp_path, "2024-03", "{report_type}_{period}.{ext}", report_type="interval_report", ext="xlsx")

    assert loc.period_folder == "2024-03"
    assert loc.file_name == "interval_report_2024-03.xlsx"
    assert loc.full_path == tmp_path / "2024-03" / "interval_report_2024-03.xlsx"
    assert (tmp_path / "2024-03").is_dir()

    # idempotent: second resolve does not fail on the existing folder
    again = resolve(tmp_path, "2024-03", "{report_type}_{period}.{ext}", report_type="interval_report", ext="xlsx")
    assert again == loc


@pytest.mark.parametrize("period", ["2024-3", "2024-13", "202403", "../2024-03"])
def test_resolve_rejects_bad_period(tmp_path: Path, period: str) -> None:
    with pytest.raises(ValueError):
        resolve(tmp_path, period, "{period}.json")


def test_render_file_name_validation() -> None:
    assert render_file_name("{period}.json", period="2024-03") == "2024-03.json"
    with pytest.raises(ValueError):
        render_file_name("{missing}.json", period="2024-03")
    with pytest.raises(ValueError):
        render_file_name("../{period}.json", period="2024-03")


def test_place_overwrites_without_duplicates(tmp_path: Path) -> None:
    loc = resolve(tmp_path, "2024-03", "report_{period}.json")

    first = place(b"first", loc)
    second = place(b"second run", loc)

    assert first.replaced is False
    assert second.replaced is True
    assert second.bytes_written == len(b"second run")
    assert loc.full_path.read_bytes() == b"second run"
    assert sorted(p.name for p in (tmp_path / "2024-03").iterdir()) == ["report_2024-03.json"]


def test_lock_file_lives_outside_period_folder(tmp_path: Path) -> None:
    loc = resolve(tmp_path, "2024-03", "report_{period}.json")
    lock = lock_path_for(loc)

    assert lock.parent == tmp_path / ".locks"
    assert lock_path_for(resolve(tmp_path, "2024-04", "report_{period}.json")) != lock


def test_write_failure_leaves_previous_artifact_and_no_temp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    loc = resolve(tmp_path, "2024-03", "report_{period}.json")
    place(b"previous", loc)

    def _disk_full(src, dst):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(resolver.os, "replace", _disk_full)

    with pytest.raises(StorageError) as excinfo:
        place(b"new", loc)

    assert excinfo.value.kind == "io"
    assert excinfo.value.detail == "ENOSPC"
    assert loc.full_path.read_bytes() == b"previous"
    assert sorted(p.name for p in (tmp_path / "2024-03").iterdir()) == ["report_2024-03.json"]


def test_folder_permission_error_maps_to_storage_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _denied(self, *args, **kwargs):
        raise PermissionError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(Path, "mkdir", _denied)

    with pytest.raises(StorageError) as excinfo:
        resolve(tmp_path, "2024-03", "report_{period}.json")

    assert excinfo.value.kind == "permission"
    assert excinfo.value.to_event()["error_code"] == "storage_error"


def test_place_times_out_when_path_is_locked(tmp_path: Path) -> None:
    loc = resolve(tmp_path, "2024-03", "report_{period}.json")
    lock = lock_path_for(loc)
    lock.parent.mkdir(parents=True, exist_ok=True)

    holder = FileLock(str(lock))
    holder.acquire()
    try:
        with pytest.raises(StorageError) as excinfo:
            place(b"blocked", loc, lock_timeout_s=0.1)
        assert excinfo.value.kind == "locked"
        assert not loc.full_path.exists()
    finally:
        holder.release()
