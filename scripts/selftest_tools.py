from __future__ import annotations

import asyncio
import tempfile
import textwrap
from pathlib import Path

from pycomrade.tools.base import ToolContext
from pycomrade.tools.builtin_tools.files import CreateDirectoryTool, ListDirectoryTool, ReadFileTool, WriteFileTool
from pycomrade.tools.builtin_tools.patch_tool import ApplyPatchTool
from pycomrade.tools.builtin_tools.search_tools import CodeSearchTool
from pycomrade.tools.builtin_tools.shell_tool import ExecuteCommandTool
from pycomrade.tools.static_server import StaticServerRegistry
from pycomrade.tools.builtin_tools.server_tools import StartServerTool, StopServerTool


async def main():
    with tempfile.TemporaryDirectory() as td:
        cwd = Path(td)
        ctx = ToolContext(cwd=str(cwd), servers=StaticServerRegistry())

        print((await CreateDirectoryTool().execute(ctx, {"path": "site"})).text)

        w = WriteFileTool()
        print((await w.execute(ctx, {"path": "site/index.html", "content": "hello\nworld\n"})).text)

        r = ReadFileTool()
        print("READ:", (await r.execute(ctx, {"path": "site/index.html"})).text.strip())

        print("SEARCH:", (await CodeSearchTool().execute(ctx, {"pattern": "world"})).text.strip())
        print("LIST:", (await ListDirectoryTool().execute(ctx, {"path": ".", "recursive": True})).text.strip())

        diff = textwrap.dedent("""\
        --- a/site/index.html
        +++ b/site/index.html
        @@ -1,2 +1,2 @@
        -hello
        -world
        +hello!!!
        +WORLD!!!
        """)
        print((await ApplyPatchTool().execute(ctx, {"patch": diff})).text)
        print("READ2:", (await r.execute(ctx, {"path": "site/index.html"})).text.strip())

        print("ESCAPE:", (await r.execute(ctx, {"path": "../outside.txt"})).text)

        sh = ExecuteCommandTool()
        print((await sh.execute(ctx, {"command": "python -c \"print(1+1)\""})).text)
        print("DENY:", (await sh.execute(ctx, {"command": "rm -rf /"})).text)

        print((await StartServerTool().execute(ctx, {"path": "site", "port": 0})).text)
        for info in ctx.servers.list():
            print((await StopServerTool().execute(ctx, {"port": info.port})).text)


if __name__ == "__main__":
    asyncio.run(main())
