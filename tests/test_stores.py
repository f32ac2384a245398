from __future__ import annotations

from pathlib import Path

import pytest

from pycomrade.events.store import EventStore, safe_name
from pycomrade.session.models import Message
from pycomrade.session.store import JsonlTranscriptStore
from pycomrade.workspace import StaticWorkspaceResolver


def test_safe_name() -> None:
    assert safe_name("team/ws 1") == "team_ws_1"
    assert safe_name("") == "_"


def test_events_roundtrip_and_skip_corrupt_lines(tmp_path: Path) -> None:
    store = EventStore(directory=tmp_path)
    store.append("ws-1", "tool.call", {"tool": "read_file", "path": Path("a.txt")})
    with store.path_for("ws-1").open("a", encoding="utf-8") as f:
        f.write('{"ts": 1, "type": "tool.res')
    store.append("ws-1", "tool.result", {"tool": "read_file", "success": True})
    events = list(store.iter_events("ws-1"))
    assert [e.type for e in events] == ["tool.call", "tool.result"]
    assert events[0].data["path"] == "a.txt"
    assert list(store.iter_events("other")) == []


def test_transcript_store_appends_per_workspace(tmp_path: Path) -> None:
    store = JsonlTranscriptStore(directory=tmp_path)
    store.append("ws-1", Message(role="user", content="hello"))
    store.append("ws-1", Message(role="assistant", content="hi"))
    store.append("ws-2", Message(role="user", content="other"))
    assert [m.content for m in store.load("ws-1")] == ["hello", "hi"]
    assert [m.role for m in store.load("ws-2")] == ["user"]
    assert store.load("missing") == []


def test_append_after_torn_write_starts_a_new_line(tmp_path: Path) -> None:
    events = EventStore(directory=tmp_path / "events")
    events.append("ws-1", "tool.call", {})
    with events.path_for("ws-1").open("a", encoding="utf-8") as f:
        f.write('{"ts": 2, "type": "tool.ca')
    events.append("ws-1", "tool.result", {})
    events.append("ws-1", "loop.state", {})
    assert [e.type for e in events.iter_events("ws-1")] == ["tool.call", "tool.result", "loop.state"]

    transcripts = JsonlTranscriptStore(directory=tmp_path / "sessions")
    transcripts.append("ws-1", Message(role="user", content="hello"))
    with transcripts.path_for("ws-1").open("a", encoding="utf-8") as f:
        f.write('{"role": "assis')
    transcripts.append("ws-1", Message(role="assistant", content="hi"))
    assert [m.content for m in transcripts.load("ws-1")] == ["hello", "hi"]


def test_workspace_resolver(workspace: Path, tmp_path: Path) -> None:
    resolver = StaticWorkspaceResolver()
    assert resolver.add("ws-1", workspace) == workspace.resolve()
    assert resolver.resolve("ws-1") == workspace.resolve()
    with pytest.raises(KeyError, match="Unknown workspace: nope"):
        resolver.resolve("nope")
    (tmp_path / "file.txt").write_text("x", encoding="utf-8")
    with pytest.raises(NotADirectoryError):
        resolver.add("bad", tmp_path / "file.txt")
