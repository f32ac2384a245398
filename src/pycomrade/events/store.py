from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from platformdirs import user_data_dir

logger = logging.getLogger(__name__)

APP_NAME = "pycomrade"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _events_dir() -> Path:
    return Path(user_data_dir(APP_NAME)) / "events"


def safe_name(workspace_id: str) -> str:
    return _UNSAFE.sub("_", workspace_id) or "_"


def append_line(path: Path, line: str, *, sync: bool = False) -> None:
    """Append one jsonl record, first terminating a torn last line if there is one."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("ab") as f:
        if f.tell() > 0:
            with path.open("rb") as r:
                r.seek(-1, os.SEEK_END)
                if r.read(1) != b"\n":
                    f.write(b"\n")
        f.write(line.encode("utf-8") + b"\n")
        if sync:
            f.flush()
            os.fsync(f.fileno())


@dataclass
class Event:
    ts: float
    type: str
    data: dict[str, Any]


@dataclass
class EventStore:
    """Append-only jsonl trace, one file per workspace.

    Tolerant of partial corruption: unreadable lines are skipped on read.
    """

    directory: Path = field(default_factory=_events_dir)

    def path_for(self, workspace_id: str) -> Path:
        return self.directory / f"{safe_name(workspace_id)}.jsonl"

    def append(self, workspace_id: str, event_type: str, data: dict[str, Any]) -> None:
        ev = Event(ts=time.time(), type=event_type, data=data)
        append_line(self.path_for(workspace_id), json.dumps(ev.__dict__, ensure_ascii=False, default=str))

    def iter_events(self, workspace_id: str) -> Iterable[Event]:
        path = self.path_for(workspace_id)
        if not path.exists():
            return []
        out: list[Event] = []
        for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
            if not line.strip():
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping corrupt event line in %s", path)
                continue
            out.append(Event(ts=float(obj.get("ts", 0.0)), type=str(obj.get("type")), data=obj.get("data") or {}))
        return out
