"""Tolerant file helpers. Absent or unreadable files read as None / empty."""

from __future__ import annotations

import contextlib
import json
from typing import TYPE_CHECKING, Any

from qino.codec import parse_annotation
from qino.models import Annotation

if TYPE_CHECKING:
    from pathlib import Path


def read_json(path: Path) -> dict[str, Any] | None:
    """Load a JSON object, or None if missing, unreadable or not an object."""
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError, UnicodeDecodeError):
        return None
    return data if isinstance(data, dict) else None


def read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None


def list_dir(path: Path) -> list[str]:
    """Sorted entry names, empty if the directory does not exist."""
    try:
        return sorted(p.name for p in path.iterdir())
    except OSError:
        return []


def mtime_ms(path: Path) -> float | None:
    try:
        return path.stat().st_mtime * 1000.0
    except OSError:
        return None


def latest_mtime(paths: list[Path]) -> float | None:
    times = [t for t in (mtime_ms(p) for p in paths) if t is not None]
    return max(times) if times else None


def write_json(path: Path, data: dict[str, Any]) -> None:
    """Write pretty JSON via tmp + rename so readers never see a torn file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        tmp.replace(path)
    except OSError:
        _remove_quietly(tmp)
        raise


def write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def annotation_files(annotations_dir: Path) -> list[str]:
    """Markdown filenames in ascending order (numeric prefixes sort correctly)."""
    return [name for name in list_dir(annotations_dir) if name.endswith(".md")]


def read_annotations_dir(annotations_dir: Path) -> list[Annotation]:
    """Parse every annotation in a directory, skipping files without front matter."""
    annotations: list[Annotation] = []
    for name in annotation_files(annotations_dir):
        path = annotations_dir / name
        raw = read_text(path)
        if raw is None:
            continue
        parsed = parse_annotation(raw)
        if parsed is None:
            continue
        meta, content = parsed
        annotations.append(Annotation(filename=name, meta=meta, content=content, modified=mtime_ms(path)))
    return annotations


def _remove_quietly(path: Path) -> None:
    with contextlib.suppress(OSError):
        path.unlink()
