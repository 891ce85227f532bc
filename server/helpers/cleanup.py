"""Helper utilities for removing session temporaries and rendered videos."""

from __future__ import annotations

import logging
from pathlib import Path
import shutil
from typing import Iterable

logger = logging.getLogger(__name__)


def _remove_path(target: Path) -> None:
    """Best-effort removal for *target* whether it is a file or directory."""

    if target.is_dir():
        shutil.rmtree(target, ignore_errors=True)
        return

    try:
        target.unlink()
    except FileNotFoundError:
        pass
    except IsADirectoryError:
        shutil.rmtree(target, ignore_errors=True)
    except OSError as exc:
        logger.warning("Could not remove %s: %s", target, exc)


def _iter_unique(paths: Iterable[Path | None]) -> list[Path]:
    seen: set[Path] = set()
    unique: list[Path] = []
    for path in paths:
        if path is None or path in seen:
            continue
        seen.add(path)
        unique.append(path)
    return unique


def remove_paths(paths: Iterable[Path | None]) -> None:
    """Remove every existing path in *paths*; ``None`` entries are skipped."""

    for target in _iter_unique(paths):
        _remove_path(Path(target))
