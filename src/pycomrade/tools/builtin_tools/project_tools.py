from __future__ import annotations

import asyncio
import json
import re
import shlex
import shutil
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..base import ToolContext, ToolResult, ToolSpec
from ...util.fs import FsError, read_text, relative_to_root, resolve_in_workspace
from ...util.subprocess import run_cmd
from .search_tools import SOURCE_GLOBS, iter_files
from .shell_tool import format_cmd_result

INSTALL_TIMEOUT = 300
TEST_TIMEOUT = 300

# First lockfile found wins.
LOCKFILE_MANAGERS = (
    ("package-lock.json", "npm"),
    ("yarn.lock", "yarn"),
    ("pnpm-lock.yaml", "pnpm"),
    ("requirements.txt", "pip"),
    ("pyproject.toml", "pip"),
)

INSTALL_ARGV = {
    "npm": ["npm", "install"],
    "yarn": ["yarn", "add"],
    "pnpm": ["pnpm", "add"],
    "pip": ["pip", "install"],
    "uv": ["uv", "pip", "install"],
}


def detect_package_manager(root: Path) -> str:
    for marker, manager in LOCKFILE_MANAGERS:
        if (root / marker).exists():
            return manager
    return "npm"


def detect_test_framework(root: Path) -> str:
    if any((root / f).exists() for f in ("jest.config.js", "jest.config.ts")):
        return "jest"
    if any((root / f).exists() for f in ("pytest.ini", "conftest.py", "tox.ini")):
        return "pytest"
    pyproject = root / "pyproject.toml"
    if pyproject.exists() and "[tool.pytest" in read_text(pyproject):
        return "pytest"
    if (root / "package.json").exists():
        return "npm"
    if (root / "tests").is_dir():
        return "pytest"
    return "npm"


async def _run(ctx: ToolContext, argv: list[str], timeout: float) -> tuple[bool, str]:
    exe = shutil.which(argv[0])
    if not exe:
        return False, f"{argv[0]} is not installed"
    res = await run_cmd([exe, *argv[1:]], cwd=str(ctx.root), timeout=timeout)
    if res.timed_out:
        return False, f"{argv[0]} timed out after {timeout:.0f}s\n" + format_cmd_result(res)
    return res.returncode == 0, format_cmd_result(res)


@dataclass
class PackageInstallTool:
    spec: ToolSpec = ToolSpec(
        name="package_install",
        description="Install packages with npm, yarn, pnpm or pip (auto-detected from lockfiles when not given).",
        permission_key="bash",
        parameters={
            "type": "object",
            "properties": {
                "packages": {"type": "string", "description": "Space-separated package names."},
                "manager": {"type": "string", "description": "npm | yarn | pnpm | pip | uv (optional)."},
            },
            "required": ["packages"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        packages = args["packages"]
        manager = (args.get("manager") or detect_package_manager(ctx.root)).strip().lower()
        if manager not in INSTALL_ARGV:
            return ToolResult.fail(f"Unsupported package manager: {manager}")
        try:
            names = shlex.split(packages)
        except ValueError as e:
            return ToolResult.fail(f"Invalid packages: {e}")
        ok, out = await _run(ctx, INSTALL_ARGV[manager] + names, INSTALL_TIMEOUT)
        if not ok:
            return ToolResult.fail(f"Package install failed ({manager})", output=out)
        return ToolResult.ok(f"Installed {packages} with {manager}\n{out}")


@dataclass
class RunTestsTool:
    spec: ToolSpec = ToolSpec(
        name="run_tests",
        description="Run the project's test suite (jest, pytest or npm test; auto-detected when not given).",
        permission_key="bash",
        parameters={
            "type": "object",
            "properties": {
                "test_path": {"type": "string", "description": "Specific test file or pattern (optional)"},
                "framework": {"type": "string", "description": "Test framework (jest, pytest, npm)"},
            },
            "required": [],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        framework = (args.get("framework") or detect_test_framework(ctx.root)).strip().lower()
        test_path = args.get("test_path")
        if test_path:
            try:
                resolve_in_workspace(ctx.root, test_path.split("::")[0])
            except FsError as e:
                return ToolResult.fail(str(e))
        if framework == "jest":
            argv = ["npx", "jest"] + ([test_path] if test_path else [])
        elif framework == "pytest":
            argv = ["pytest", "-q"] + ([test_path] if test_path else [])
        elif framework == "npm":
            argv = ["npm", "test"] + (["--", test_path] if test_path else [])
        else:
            return ToolResult.fail(f"Unsupported test framework: {framework}")
        ok, out = await _run(ctx, argv, TEST_TIMEOUT)
        if not ok:
            return ToolResult.fail("Tests failed", output=out)
        return ToolResult.ok(out or "Tests completed")


def _project_meta(root: Path) -> dict[str, str]:
    meta = {"name": root.name or "Project", "description": "", "install": "", "run": ""}
    pkg = root / "package.json"
    pyproject = root / "pyproject.toml"
    if pkg.exists():
        try:
            obj = json.loads(read_text(pkg))
        except json.JSONDecodeError:
            obj = {}
        meta["name"] = obj.get("name") or meta["name"]
        meta["description"] = obj.get("description") or ""
        meta["install"] = "npm install"
        meta["run"] = "npm start" if "start" in (obj.get("scripts") or {}) else "npm run"
    elif pyproject.exists():
        try:
            project = tomllib.loads(read_text(pyproject)).get("project") or {}
        except tomllib.TOMLDecodeError:
            project = {}
        meta["name"] = project.get("name") or meta["name"]
        meta["description"] = project.get("description") or ""
        meta["install"] = "pip install -e ."
        scripts = list((project.get("scripts") or {}).keys())
        meta["run"] = f"{scripts[0]} --help" if scripts else "python -m " + meta["name"].replace("-", "_")
    return meta


def render_readme(root: Path) -> str:
    m = _project_meta(root)
    parts = [f"# {m['name']}", ""]
    if m["description"]:
        parts += [m["description"], ""]
    parts += ["## Getting Started", ""]
    if m["install"]:
        parts += ["### Installation", "```bash", m["install"], "```", ""]
    if m["run"]:
        parts += ["### Running the project", "```bash", m["run"], "```", ""]
    return "\n".join(parts)


_DEF_RE = re.compile(
    r"^(?:export\s+)?(?:async\s+)?(?:def|class|function|interface)\s+([A-Za-z_]\w*)"
)


def render_api(root: Path) -> str:
    lines = ["# API Reference", ""]
    for f in iter_files(root, root, SOURCE_GLOBS):
        names = []
        for line in read_text(f).splitlines():
            m = _DEF_RE.match(line)
            if m and not m.group(1).startswith("_"):
                names.append(m.group(1))
        if names:
            lines += [f"## {relative_to_root(root, f)}", ""] + [f"- `{n}`" for n in names] + [""]
    return "\n".join(lines)


@dataclass
class GenerateDocumentationTool:
    spec: ToolSpec = ToolSpec(
        name="generate_documentation",
        description="Generate a README (readme), an API index of top-level definitions (api), or both (all).",
        permission_key="edit",
        parameters={
            "type": "object",
            "properties": {
                "type": {"type": "string", "description": "Documentation type (readme, api, all)"},
                "output": {"type": "string", "description": "Output file path (optional, readme only)"},
            },
            "required": ["type"],
        },
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        kind = args["type"].strip().lower()
        if kind not in {"readme", "api", "all"}:
            return ToolResult.fail(f"Unknown documentation type: {kind}")
        jobs: list[tuple[str, Any]] = []
        if kind in {"readme", "all"}:
            jobs.append((args.get("output") or "README.md", render_readme))
        if kind in {"api", "all"}:
            jobs.append(("API.md" if kind == "all" or not args.get("output") else args["output"], render_api))
        written = []
        for out_path, render in jobs:
            try:
                target = resolve_in_workspace(ctx.root, out_path)
            except FsError as e:
                return ToolResult.fail(str(e))
            text = await asyncio.to_thread(render, ctx.root)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf-8")
            written.append(relative_to_root(ctx.root, target))
        return ToolResult.ok("Generated " + ", ".join(written))
