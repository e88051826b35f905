"""Atomic persistence of the vessel snapshot shared with the read side.

The snapshot is written to ``<target>.tmp`` next to the target and renamed
over it, so readers only ever see a complete previous or complete new file.
"""
from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Iterable

from straitfeed.schemas.vessel import VesselSnapshot

logger = logging.getLogger(__name__)


def _tmp_path(path: Path) -> Path:
    return path.with_name(path.name + ".tmp")


def write_snapshot(path: str | Path, vessels: Iterable[VesselSnapshot]) -> int:
    """Serialize *vessels* and atomically replace *path*.

    Returns the number of vessels written.

    Raises:
        OSError: when the temp file cannot be written or renamed. The target
            is left untouched in that case.
    """
    path = Path(path)
    rows = [v.to_json_dict() for v in vessels]
    data = json.dumps(rows, indent=4)

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = _tmp_path(path)
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError:
        try:
            tmp.unlink()
        except FileNotFoundError:
            pass
        raise
    logger.debug("Wrote %d vessels to %s", len(rows), path)
    return len(rows)


def load_live_snapshot(
    path: str | Path, max_age: float, now: float | None = None
) -> list[dict] | None:
    """Read the snapshot the way the read side does.

    Returns None ("no live data") when the file is missing, older than
    *max_age* seconds, unreadable, not a JSON array, or empty.
    """
    path = Path(path)
    if now is None:
        now = time.time()
    try:
        mtime = path.stat().st_mtime
    except FileNotFoundError:
        return None
    if now - mtime > max_age:
        return None

    try:
        with open(path, encoding="utf-8") as f:
            ships = json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("Unreadable snapshot %s: %s", path, exc)
        return None

    if not isinstance(ships, list) or not ships:
        return None
    return ships
