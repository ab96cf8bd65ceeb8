from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from interval_report.errors import RecipientResolutionError

logger = logging.getLogger(__name__)

COLUMNS = ("to", "cc", "bcc")

Cell = Optional[str]


@dataclass(frozen=True)
class RecipientSource:
    """Three parallel recipient columns as read from the operator-maintained sheet.

    Cells are kept exactly as read (None for empty cells); interpretation is
    done by `resolve_recipients`.
    """

    to: Tuple[Cell, ...] = ()
    cc: Tuple[Cell, ...] = ()
    bcc: Tuple[Cell, ...] = ()
    origin: Optional[str] = None

    @classmethod
    def from_rows(cls, rows: Iterable[Sequence[Cell]], *, origin: Optional[str] = None) -> "RecipientSource":
        """Build from row tuples (to, cc, bcc). Short rows are padded with None."""

        columns: List[List[Cell]] = [[], [], []]
        for row in rows:
            padded = list(row)[:3] + [None] * (3 - min(len(row), 3))
            for idx, cell in enumerate(padded):
                columns[idx].append(cell)

        return cls(to=tuple(columns[0]), cc=tuple(columns[1]), bcc=tuple(columns[2]), origin=origin)


@dataclass(frozen=True)
class RecipientGroup:
    to: Tuple[str, ...]
    cc: Tuple[str, ...]
    bcc: Tuple[str, ...]

    def as_dict(self) -> dict[str, list[str]]:
        return {"to": list(self.to), "cc": list(self.cc), "bcc": list(self.bcc)}


def read_column(cells: Iterable[Cell]) -> List[str]:
    """Read one column top-down until the first empty cell.

    Empty means None or "". Anything below that gap is ignored, even if it
    holds an address. Whitespace-only cells are skipped without ending the
    column. Duplicates keep their first position.
    """

    out: List[str] = []
    seen: set[str] = set()
    for cell in cells:
        if cell is None or cell == "":
            break
        value = str(cell).strip()
        if not value:
            continue
        if value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def resolve_recipients(source: RecipientSource, *, require_to: bool = True) -> RecipientGroup:
    """Resolve the TO/CC/BCC groups from a recipient source.

    Pure: the same source content always yields the same group. Raises
    RecipientResolutionError when TO ends up empty and require_to is set,
    so an addressless message is never handed to the mail client.
    """

    group = RecipientGroup(
        to=tuple(read_column(source.to)),
        cc=tuple(read_column(source.cc)),
        bcc=tuple(read_column(source.bcc)),
    )

    if require_to and not group.to:
        raise RecipientResolutionError(
            "recipient source has no TO addresses",
            detail=source.origin,
        )

    logger.info(
        "Resolved recipients from %s: to=%d cc=%d bcc=%d",
        source.origin or "<memory>",
        len(group.to),
        len(group.cc),
        len(group.bcc),
    )
    return group


def load_recipient_source(path: Path) -> RecipientSource:
    """Load a recipient sheet (CSV or XLSX) with header TO, CC, BCC.

    Header matching is case-insensitive. Blank cells become None so column
    termination works the same for both formats.
    """

    if not path.exists():
        raise RecipientResolutionError(f"recipient source not found: {path}")

    suffix = path.suffix.lower()
    try:
        if suffix == ".csv":
            df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=False)
        elif suffix == ".xlsx":
            df = pd.read_excel(path, dtype=str, engine="openpyxl")
        else:
            raise RecipientResolutionError(f"unsupported recipient source format: {suffix or '(none)'}")
    except (OSError, ValueError) as exc:
        raise RecipientResolutionError(f"failed to read recipient source {path}", detail=str(exc)) from exc

    by_name = {str(c).strip().lower(): c for c in df.columns}
    missing = [name for name in COLUMNS if name not in by_name]
    if missing:
        raise RecipientResolutionError(
            f"recipient source {path} is missing columns: {', '.join(m.upper() for m in missing)}"
        )

    clean = df.astype(object).where(pd.notna(df), None)

    def _column(name: str) -> Tuple[Cell, ...]:
        return tuple(clean[by_name[name]].tolist())

    return RecipientSource(to=_column("to"), cc=_column("cc"), bcc=_column("bcc"), origin=str(path))
