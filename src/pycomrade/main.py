from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path

import typer
from rich.align import Align
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from .agent.models import ApprovalDecision, ChatMessage
from .config.loader import load_behavior_config
from .config.models import BehaviorConfig
from .events.store import EventStore
from .llm.factory import resolve_provider
from .mcp.errors import MCPError
from .mcp.manager import MCPManager
from .orchestrator import Orchestrator
from .session.store import JsonlTranscriptStore
from .tools.builtin import register_builtin_tools
from .tools.permissions import risk_level
from .tools.registry import ToolRegistry
from .workspace import StaticWorkspaceResolver

app = typer.Typer(add_completion=False, help="pycomrade: local tool-using coding agent.")
console = Console()


@app.callback()
def main(
    log_level: str = typer.Option("WARNING", "--log-level", help="DEBUG, INFO, WARNING or ERROR."),
):
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


def _resolve_cwd(cwd: Path | None) -> Path:
    cwd = Path(str(cwd or Path.cwd())).expanduser().resolve()
    if cwd.exists() and not cwd.is_dir():
        raise typer.BadParameter(f"--cwd must be a directory, got file: {cwd}")
    if not cwd.exists():
        cwd.mkdir(parents=True, exist_ok=True)
    return cwd


def _ask_approval(tool: str, arguments: dict, risk: str) -> ApprovalDecision:
    console.print(Panel.fit(
        json.dumps(arguments, ensure_ascii=False, indent=2)[:2000],
        title=f"approve {tool}? (risk: {risk})",
        border_style="yellow",
    ))
    answer = Prompt.ask("[y] allow once, [a] allow all, [N] deny", choices=["y", "a", "n"], default="n")
    return ApprovalDecision(allowed=answer in {"y", "a"}, allow_all=answer == "a")


async def _run_turn(orch: Orchestrator, workspace: str, prompt: str) -> int:
    exit_code = 0
    try:
        if orch.config.mcp_servers:
            for name, res in (await orch.connect_mcp_servers()).items():
                if isinstance(res, str):
                    console.print(f"[yellow]MCP {name} unavailable:[/yellow] {res}")
        async for chunk in orch.chat(workspace, [ChatMessage(role="user", content=prompt)]):
            if chunk.content:
                console.print(chunk.content, end="", markup=False, highlight=False)
            if chunk.approval is not None:
                req = chunk.approval
                decision = await asyncio.to_thread(_ask_approval, req.tool, req.arguments, req.risk)
                orch.resolve_approval(workspace, decision)
            if chunk.error:
                console.print(f"\n[bold red]Error:[/bold red] {chunk.error}")
                exit_code = 1
        console.print()
    finally:
        await orch.aclose()
    return exit_code


@app.command()
def run(
    prompt: str = typer.Option(..., "--prompt", "-p", help="User prompt to run once."),
    provider: str = typer.Option(..., "--provider", help="Provider name registered in YAML."),
    config: Path = typer.Option(Path("pycomrade.yaml"), "--config", help="Provider YAML path (default: ./pycomrade.yaml)."),
    model: str = typer.Option(None, "--model", help="Override the provider's model."),
    cwd: Path = typer.Option(None, "--cwd", help="Workspace root. Defaults to current directory."),
    workspace: str = typer.Option("local", "--workspace", help="Workspace id used for approvals and traces."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON (pycomrade.json) path."),
    yes: bool = typer.Option(False, "--yes", help="Headless: approve every tool call without asking."),
    max_tool_calls: int = typer.Option(None, "--max-tool-calls", help="Tool-call ceiling for this turn."),
    save_transcript: bool = typer.Option(True, "--transcript/--no-transcript", help="Append messages to the transcript store."),
):
    """Run one chat turn in a workspace."""
    cwd = _resolve_cwd(cwd)
    behavior = load_behavior_config(cwd=cwd, explicit_path=behavior_config)
    if yes:
        behavior.approval_mode = "auto"
    if max_tool_calls:
        behavior.max_tool_calls = max_tool_calls
    llm = resolve_provider(provider, model=model, yaml_path=config)

    workspaces = StaticWorkspaceResolver()
    workspaces.add(workspace, cwd)
    events = EventStore()

    table = Table.grid(padding=(0, 2))
    table.add_row("[bold green]cwd[/bold green]", f"[bright_cyan]{cwd}[/bright_cyan]")
    table.add_row("[bold green]workspace[/bold green]", f"[bright_cyan]{workspace}[/bright_cyan]")
    table.add_row("[bold green]provider[/bold green]", f"[bright_cyan]{llm.provider_name}[/bright_cyan]")
    table.add_row("[bold green]model[/bold green]", f"[bright_cyan]{llm.model}[/bright_cyan]")
    table.add_row("[bold green]tools[/bold green]", f"[bright_cyan]{'native' if llm.native_tools else 'text'}[/bright_cyan]")
    table.add_row("[bold green]approvals[/bold green]", f"[bright_cyan]{behavior.approval_mode}[/bright_cyan]")
    table.add_row("[bold green]behavior_config[/bold green]", f"[bright_cyan]{behavior.loaded_from or '(none)'}[/bright_cyan]")
    table.add_row("[bold green]events[/bold green]", f"[bright_cyan]{events.path_for(workspace)}[/bright_cyan]")
    console.print(Align.center(Panel(table, title="[bold magenta]pycomrade[/bold magenta]", border_style="bright_blue")))

    orch = Orchestrator(
        llm,
        workspaces,
        behavior,
        transcripts=JsonlTranscriptStore() if save_transcript else None,
        events=events,
    )
    console.print(f"\n[bold]You:[/bold] {prompt}\n")
    code = asyncio.run(_run_turn(orch, workspace, prompt))
    raise typer.Exit(code=code)


@app.command()
def tools():
    """List the built-in tool catalog."""
    registry = ToolRegistry()
    register_builtin_tools(registry)
    table = Table(title="Tools")
    table.add_column("name", style="bold")
    table.add_column("permission")
    table.add_column("risk")
    table.add_column("description")
    for spec in registry.list_specs():
        table.add_row(spec.name, spec.permission_key, risk_level(spec.permission_key), spec.description)
    console.print(table)


async def _list_mcp(behavior: BehaviorConfig) -> list[tuple[str, str]]:
    manager = MCPManager(request_timeout=behavior.mcp_request_timeout_s)
    found: list[tuple[str, str]] = []
    try:
        for name, sc in behavior.mcp_servers.items():
            try:
                conn = await manager.connect(sc)
            except MCPError as e:
                console.print(f"[red]{name}: {e}[/red]")
                continue
            for t in conn.tools:
                found.append((f"{sc.tool_prefix}.{t.name}", t.description or ""))
    finally:
        await manager.aclose()
    return found


@app.command()
def mcp(
    cwd: Path = typer.Option(None, "--cwd", help="Working directory (project root). Defaults to current directory."),
    behavior_config: Path = typer.Option(None, "--behavior-config", help="Optional behavior JSON (pycomrade.json) path."),
):
    """Connect the configured MCP servers and list the tools they expose."""
    cwd = _resolve_cwd(cwd)
    behavior = load_behavior_config(cwd=cwd, explicit_path=behavior_config)
    if not behavior.mcp_servers:
        console.print("No MCP servers configured. Add mcp_servers to pycomrade.json.")
        raise typer.Exit(code=0)
    for name, sc in behavior.mcp_servers.items():
        target = sc.url if sc.transport == "sse" else " ".join(sc.command)
        console.print(f"[bold]{name}[/bold] ({sc.transport}) -> {target} (prefix={sc.tool_prefix})")
    found = asyncio.run(_list_mcp(behavior))
    if not found:
        console.print("No MCP tools discovered.")
        return
    console.print("\nDiscovered MCP tools:")
    for n, d in sorted(found):
        console.print(f"- [bold]{n}[/bold]: {d}")


@app.command()
def events(
    workspace: str = typer.Option("local", "--workspace", help="Workspace id to inspect."),
    tail: int = typer.Option(200, "--tail", help="Show last N events."),
):
    """Show recent structured events (LLM calls, tool calls, approvals) for a workspace."""
    es = EventStore()
    evs = list(es.iter_events(workspace))
    evs = evs[-tail:] if tail and tail > 0 else evs
    console.print(Panel.fit(f"workspace: {workspace}\nfile: {es.path_for(workspace)}\nevents: {len(evs)}", title="Events"))
    for e in evs:
        ts = datetime.fromtimestamp(e.ts).strftime("%Y-%m-%d %H:%M:%S")
        console.print(Panel.fit(json.dumps(e.data, ensure_ascii=False, indent=2)[:4000], title=f"{ts}  {e.type}"))


@app.command()
def stats(
    workspace: str = typer.Option("local", "--workspace", help="Workspace id to summarize."),
):
    """Compact summary of a workspace trace: latency, errors, approvals and tool usage."""
    es = EventStore()
    evs = list(es.iter_events(workspace))

    def count(kind: str) -> int:
        return sum(1 for e in evs if e.type == kind)

    def avg_ms(kind: str) -> float | None:
        vals = [float(e.data["elapsed_ms"]) for e in evs
                if e.type == kind and isinstance(e.data.get("elapsed_ms"), (int, float))]
        return sum(vals) / len(vals) if vals else None

    freq: dict[str, int] = {}
    for e in evs:
        if e.type == "tool.call" and e.data.get("tool"):
            freq[e.data["tool"]] = freq.get(e.data["tool"], 0) + 1

    lines = [
        f"workspace: {workspace}",
        f"events_file: {es.path_for(workspace)}",
        f"llm_requests: {count('llm.request')}  llm_responses: {count('llm.response')}  llm_errors: {count('llm.error')}",
        f"tool_calls: {count('tool.call')}  tool_results: {count('tool.result')}  "
        f"tool_invalid: {count('tool.invalid')}  tool_denied: {count('tool.denied')}",
        f"approvals_requested: {count('approval.requested')}  ceilings_hit: {count('loop.ceiling')}",
    ]
    for kind, label in (("llm.response", "llm_avg_latency_ms"), ("tool.result", "tool_avg_latency_ms")):
        v = avg_ms(kind)
        if v is not None:
            lines.append(f"{label}: {v:.1f}")
    top = sorted(freq.items(), key=lambda x: x[1], reverse=True)[:12]
    if top:
        lines.append("top_tools:")
        lines += [f"  - {name}: {c}" for name, c in top]
    console.print(Panel.fit("\n".join(lines), title="Stats"))


if __name__ == "__main__":
    app()
