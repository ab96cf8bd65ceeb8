"""Monthly artifact layout with idempotent, locked placement."""

from interval_report.storage.resolver import (
    PlacementResult,
    StoredArtifactLocation,
    lock_path_for,
    place,
    render_file_name,
    resolve,
)

__all__ = [
    "PlacementResult",
    "StoredArtifactLocation",
    "lock_path_for",
    "place",
    "render_file_name",
    "resolve",
]
