"""QinoConfig: process settings for a protocol workspace.

Two files, two concerns:

    qino.toml                   # process config (this module), optional
    .claude/qino-config.json    # workspace display config (types, statuses, child workspaces)

qino.toml example:

    [qino]
    name = "research"
    backend = "direct"      # only the direct-filesystem backend ships

    [watcher]
    debounce_ms = 300       # coalescing window for raw filesystem events
    poll_interval = 1.0     # seconds, used when inotify is unavailable
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from qino.files import read_json
from qino.models import WorkspaceConfig

_CONFIG_FILENAME = "qino.toml"
_WORKSPACE_CONFIG = Path(".claude") / "qino-config.json"

_TEMPLATE = """\
# qino workspace settings. Every key except name is optional.

[qino]
name = "{name}"
# backend = "direct"

# Change-event timing for `qino watch`:
# [watcher]
# debounce_ms = 300
# poll_interval = 1.0
"""


@dataclass
class WatcherConfig:
    debounce_ms: int = 300
    poll_interval: float = 1.0


@dataclass
class QinoConfig:
    """Resolved configuration for a workspace."""

    root: Path                      # directory that contains qino.toml (or the start dir)
    name: str = ""
    backend: str = "direct"         # only the direct-filesystem backend ships
    watcher: WatcherConfig = field(default_factory=WatcherConfig)


def load_config(root: Path | str | None = None) -> QinoConfig:
    """Load qino.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        with config_path.open("rb") as f:
            raw = tomllib.load(f)

    qino_section = raw.get("qino", {})
    watcher_section = raw.get("watcher", {})

    return QinoConfig(
        root=root_path,
        name=qino_section.get("name", root_path.name),
        backend=str(qino_section.get("backend", "direct")),
        watcher=WatcherConfig(
            debounce_ms=int(watcher_section.get("debounce_ms", 300)),
            poll_interval=float(watcher_section.get("poll_interval", 1.0)),
        ),
    )


def _find_root(start: Path) -> Path:
    """Nearest of start and its ancestors holding qino.toml; start itself when none does."""
    return next((d for d in (start, *start.parents) if (d / _CONFIG_FILENAME).is_file()), start)


def init_config(root: Path, name: str | None = None) -> Path:
    """Write a starter qino.toml into root and return its path.

    The workspace name defaults to the directory name. An existing qino.toml
    is never overwritten: FileExistsError is raised instead.
    """
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"Refusing to overwrite workspace settings in {config_path}"
        raise FileExistsError(msg)

    content = _TEMPLATE.format(name=name or root.name)
    config_path.write_text(content)
    return config_path


def read_config(workspace_dir: Path) -> WorkspaceConfig:
    """Read .claude/qino-config.json; a missing or malformed file is an empty config."""
    return WorkspaceConfig.from_dict(read_json(workspace_dir / _WORKSPACE_CONFIG) or {})
