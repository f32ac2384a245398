from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from platformdirs import user_data_dir

from ..events.store import append_line, safe_name
from .models import Message

logger = logging.getLogger(__name__)

APP_NAME = "pycomrade"


def _sessions_dir() -> Path:
    return Path(user_data_dir(APP_NAME)) / "sessions"


class TranscriptStore(Protocol):
    def append(self, workspace_id: str, message: Message) -> None: ...


@dataclass
class JsonlTranscriptStore:
    """Every message the loop appends, one jsonl file per workspace."""

    directory: Path = field(default_factory=_sessions_dir)

    def path_for(self, workspace_id: str) -> Path:
        return self.directory / f"{safe_name(workspace_id)}.jsonl"

    def append(self, workspace_id: str, message: Message) -> None:
        append_line(self.path_for(workspace_id), json.dumps(message.__dict__, ensure_ascii=False), sync=True)

    def load(self, workspace_id: str) -> list[Message]:
        path = self.path_for(workspace_id)
        msgs: list[Message] = []
        if not path.exists():
            return msgs
        for line in path.read_text(encoding="utf-8").splitlines():
            if not line.strip():
                continue
            try:
                msgs.append(Message(**json.loads(line)))
            except (json.JSONDecodeError, TypeError):
                # A partial trailing line from a process killed mid-write.
                logger.debug("Skipping corrupt transcript line in %s", path)
                continue
        return msgs
