from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class BrowserConfig:
    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 720
    timeout_ms: int = 30000


class BrowserSession:
    """One lazily launched Chromium page shared by the browser_* tools."""

    def __init__(self, config: BrowserConfig | None = None):
        self.config = config or BrowserConfig()
        self._playwright: Any = None
        self._browser: Any = None
        self._page: Any = None

    @property
    def is_open(self) -> bool:
        return self._page is not None

    async def initialize(self) -> None:
        if self._page is not None:
            return
        try:
            from playwright.async_api import async_playwright
        except ImportError as e:
            raise ImportError(
                "Playwright is required for browser automation. "
                "Install it with: pip install 'pycomrade[browser]' && playwright install chromium"
            ) from e

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.config.headless)
        context = await self._browser.new_context(
            viewport={"width": self.config.viewport_width, "height": self.config.viewport_height},
        )
        self._page = await context.new_page()
        self._page.set_default_timeout(self.config.timeout_ms)
        logger.info("Browser launched (headless=%s)", self.config.headless)

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._playwright = self._browser = self._page = None

    async def _page_or_launch(self) -> Any:
        await self.initialize()
        return self._page

    async def navigate(self, url: str) -> str:
        page = await self._page_or_launch()
        resp = await page.goto(url, wait_until="load")
        title = await page.title()
        status = resp.status if resp is not None else "n/a"
        return f"Navigated to {page.url} (status {status})\nTitle: {title}"

    async def click(self, selector: str) -> str:
        page = await self._page_or_launch()
        await page.click(selector)
        return f"Clicked {selector}"

    async def fill(self, selector: str, value: str) -> str:
        page = await self._page_or_launch()
        await page.fill(selector, value)
        return f"Filled {selector}"

    async def screenshot(self, path: Path, full_page: bool = False) -> str:
        page = await self._page_or_launch()
        path.parent.mkdir(parents=True, exist_ok=True)
        await page.screenshot(path=str(path), full_page=full_page)
        return f"Screenshot saved to {path}"

    async def extract(self, selector: str | None = None, max_chars: int = 10000) -> str:
        page = await self._page_or_launch()
        if selector:
            texts = await page.locator(selector).all_inner_texts()
            text = "\n".join(texts)
        else:
            text = await page.inner_text("body")
        if len(text) > max_chars:
            text = text[:max_chars] + "\n... (truncated)"
        return text
