"""Tiny stdio tool server used by the test-suite and ``pycomrade mcp`` demos.

Run with ``python -m pycomrade.mcp.example_server``.
"""
from __future__ import annotations

import json
import sys
import time

TOOLS = [
    {
        "name": "echo",
        "description": "Echo back the provided text.",
        "inputSchema": {
            "type": "object",
            "properties": {"text": {"type": "string"}},
            "required": ["text"],
        },
    },
    {
        "name": "add",
        "description": "Add two numbers.",
        "inputSchema": {
            "type": "object",
            "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
            "required": ["a", "b"],
        },
    },
    {
        "name": "now",
        "description": "Return current epoch time.",
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "sleep",
        "description": "Sleep for the given seconds, then answer.",
        "inputSchema": {"type": "object", "properties": {"seconds": {"type": "number"}}, "required": []},
    },
    {
        "name": "crash",
        "description": "Exit the server without answering.",
        "inputSchema": {"type": "object", "properties": {}, "required": []},
    },
]


def _reply(rid: int, result=None, error=None):
    msg = {"jsonrpc": "2.0", "id": rid}
    if error is not None:
        msg["error"] = {"code": -32000, "message": str(error)}
    else:
        msg["result"] = result
    sys.stdout.write(json.dumps(msg, ensure_ascii=False) + "\n")
    sys.stdout.flush()


def _text(s: str) -> dict:
    return {"content": [{"type": "text", "text": s}]}


def _call(name, args) -> dict:
    if name == "echo":
        return _text(str(args.get("text", "")))
    if name == "add":
        return _text(str(float(args.get("a", 0)) + float(args.get("b", 0))))
    if name == "now":
        return _text(str(time.time()))
    if name == "sleep":
        time.sleep(float(args.get("seconds", 1)))
        return _text("awake")
    if name == "crash":
        sys.exit(3)
    raise ValueError(f"Unknown tool: {name}")


def main():
    for line in sys.stdin:
        line = line.strip()
        if not line:
            continue
        try:
            req = json.loads(line)
        except json.JSONDecodeError:
            continue
        if not isinstance(req, dict) or "id" not in req:
            continue
        method = req.get("method")
        params = req.get("params") or {}
        try:
            rid = int(req["id"])
        except (TypeError, ValueError):
            continue

        try:
            if method == "tools/list":
                _reply(rid, {"tools": TOOLS})
            elif method == "tools/call":
                _reply(rid, _call(params.get("name"), params.get("arguments") or {}))
            else:
                _reply(rid, error=f"Unknown method: {method}")
        except Exception as e:
            _reply(rid, error=e)


if __name__ == "__main__":
    main()
