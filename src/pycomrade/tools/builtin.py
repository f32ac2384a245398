from __future__ import annotations

from .registry import ToolRegistry

from .builtin_tools.files import CreateDirectoryTool, ListDirectoryTool, ReadFileTool, WriteFileTool
from .builtin_tools.patch_tool import ApplyPatchTool
from .builtin_tools.shell_tool import ExecuteCommandTool
from .builtin_tools.git_tools import GitAddTool, GitCommitTool, GitDiffTool, GitLogTool, GitStatusTool
from .builtin_tools.web_tools import HttpRequestTool, WebFetchTool, WebSearchTool
from .builtin_tools.search_tools import CodeSearchTool, FindSymbolTool
from .builtin_tools.project_tools import GenerateDocumentationTool, PackageInstallTool, RunTestsTool
from .builtin_tools.server_tools import StartServerTool, StopServerTool
from .builtin_tools.browser_tools import (
    BrowserClickTool,
    BrowserCloseTool,
    BrowserExtractTool,
    BrowserFillTool,
    BrowserNavigateTool,
    BrowserScreenshotTool,
)
from .builtin_tools.mcp_tools import (
    MCPConnectTool,
    MCPDisconnectTool,
    MCPInvokeTool,
    MCPListConnectionsTool,
    MCPListToolsTool,
)


def register_builtin_tools(registry: ToolRegistry, *, browser: bool = True, mcp: bool = True) -> None:
    registry.register(WriteFileTool())
    registry.register(ReadFileTool())
    registry.register(CreateDirectoryTool())
    registry.register(ListDirectoryTool())
    registry.register(ApplyPatchTool())
    registry.register(ExecuteCommandTool())
    registry.register(GitStatusTool())
    registry.register(GitDiffTool())
    registry.register(GitAddTool())
    registry.register(GitCommitTool())
    registry.register(GitLogTool())
    registry.register(WebSearchTool())
    registry.register(WebFetchTool())
    registry.register(HttpRequestTool())
    registry.register(CodeSearchTool())
    registry.register(FindSymbolTool())
    registry.register(PackageInstallTool())
    registry.register(RunTestsTool())
    registry.register(GenerateDocumentationTool())
    registry.register(StartServerTool())
    registry.register(StopServerTool())
    if browser:
        registry.register(BrowserNavigateTool())
        registry.register(BrowserClickTool())
        registry.register(BrowserFillTool())
        registry.register(BrowserScreenshotTool())
        registry.register(BrowserExtractTool())
        registry.register(BrowserCloseTool())
    if mcp:
        registry.register(MCPConnectTool())
        registry.register(MCPListToolsTool())
        registry.register(MCPInvokeTool())
        registry.register(MCPDisconnectTool())
        registry.register(MCPListConnectionsTool())
