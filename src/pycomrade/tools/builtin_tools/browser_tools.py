from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..base import ToolContext, ToolResult, ToolSpec
from ...util.fs import FsError, relative_to_root, resolve_in_workspace


def _object(props: dict[str, Any], required: list[str]) -> dict[str, Any]:
    return {"type": "object", "properties": props, "required": required}


async def _guarded(ctx: ToolContext, action) -> ToolResult:
    if ctx.browser is None:
        return ToolResult.fail("Browser automation is not available in this context")
    try:
        return ToolResult.ok(await action(ctx.browser))
    except ImportError as e:
        return ToolResult.fail(str(e))
    except Exception as e:
        # Playwright raises its own Error/TimeoutError types; report them to the model.
        return ToolResult.fail(f"Browser action failed: {e}")


@dataclass
class BrowserNavigateTool:
    spec: ToolSpec = ToolSpec(
        name="browser_navigate",
        description="Open a URL in the headless browser (launched on first use).",
        permission_key="browser",
        parameters=_object({"url": {"type": "string", "description": "URL to open."}}, ["url"]),
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        return await _guarded(ctx, lambda b: b.navigate(args["url"]))


@dataclass
class BrowserClickTool:
    spec: ToolSpec = ToolSpec(
        name="browser_click",
        description="Click the element matching a CSS selector.",
        permission_key="browser",
        parameters=_object({"selector": {"type": "string"}}, ["selector"]),
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        return await _guarded(ctx, lambda b: b.click(args["selector"]))


@dataclass
class BrowserFillTool:
    spec: ToolSpec = ToolSpec(
        name="browser_fill",
        description="Fill a form field matching a CSS selector.",
        permission_key="browser",
        parameters=_object({"selector": {"type": "string"}, "value": {"type": "string"}}, ["selector", "value"]),
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        return await _guarded(ctx, lambda b: b.fill(args["selector"], args["value"]))


@dataclass
class BrowserScreenshotTool:
    spec: ToolSpec = ToolSpec(
        name="browser_screenshot",
        description="Save a PNG screenshot of the current page into the workspace.",
        permission_key="browser",
        parameters=_object({
            "path": {"type": "string", "description": "Output path (default screenshot.png)"},
            "full_page": {"type": "boolean"},
        }, []),
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        try:
            target = resolve_in_workspace(ctx.root, args.get("path") or "screenshot.png")
        except FsError as e:
            return ToolResult.fail(str(e))
        res = await _guarded(ctx, lambda b: b.screenshot(target, bool(args.get("full_page"))))
        if res.success:
            return ToolResult.ok(f"Screenshot saved to {relative_to_root(ctx.root, target)}")
        return res


@dataclass
class BrowserExtractTool:
    spec: ToolSpec = ToolSpec(
        name="browser_extract",
        description="Return the visible text of the page, or of elements matching a CSS selector.",
        permission_key="browser",
        parameters=_object({
            "selector": {"type": "string", "description": "Optional CSS selector."},
            "max_length": {"type": "integer"},
        }, []),
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        return await _guarded(ctx, lambda b: b.extract(args.get("selector"), int(args.get("max_length") or 10000)))


@dataclass
class BrowserCloseTool:
    spec: ToolSpec = ToolSpec(
        name="browser_close",
        description="Close the browser.",
        permission_key="browser",
        parameters=_object({}, []),
    )

    async def execute(self, ctx: ToolContext, args: dict[str, Any]) -> ToolResult:
        async def _close(b) -> str:
            await b.close()
            return "Browser closed"
        return await _guarded(ctx, _close)
