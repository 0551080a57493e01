import asyncio
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Request, Response, async_playwright

from .constants import (
    AUTH_NAVIGATION_TIMEOUT,
    AUTH_SETTLE_DELAY,
    CLICK_TIMEOUT,
    EXPAND_SELECTORS,
    VIEWPORT,
)
from .errors import NavigationFailure
from .logger import Reporter
from .models import Settings

TrafficHandler = Callable[[str, str | None], None]
ControlChannel = Callable[[], Awaitable[Any]]

STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
    window.navigator.chrome = {runtime: {}};
"""


async def read_stdin_line() -> str:
    return await asyncio.to_thread(sys.stdin.readline)


class BrowserSession:
    """
    One Playwright browser, one context, one page.

    The orchestrator only talks to the browser through this class:
    ``navigate_to``, ``evaluate``, ``wait_for_selector``, ``content``,
    ``network_traffic`` and ``request_headers``. Tests substitute an object
    with the same methods.
    """

    def __init__(
        self,
        settings: Settings,
        reporter: Reporter | None = None,
        control_channel: ControlChannel = read_stdin_line,
        browser_type: str = "chromium",
    ):
        self.settings = settings
        self.reporter = reporter or Reporter()
        self.control_channel = control_channel
        self.browser_type = browser_type.lower()
        self.page: Page | None = None
        self._playwright = None
        self._browser = None
        self._context = None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def initialize(self) -> None:
        self.reporter.info("browser.launch", f"Launching {self.browser_type} browser...")
        try:
            self._playwright = await async_playwright().start()
            launcher = getattr(self._playwright, self.browser_type)
            launch_args = []
            if self.browser_type == "chromium":
                launch_args = [
                    "--no-sandbox",
                    "--disable-blink-features=AutomationControlled",
                    "--disable-dev-shm-usage",
                ]
            self._browser = await launcher.launch(
                headless=self.settings.headless,
                args=launch_args,
            )
            self._context = await self._browser.new_context(
                user_agent=self.settings.user_agent,
                viewport=VIEWPORT,
                bypass_csp=True,
                ignore_https_errors=True,
            )
            self._context.set_default_timeout(self.settings.timeout)
            await self._context.add_init_script(STEALTH_SCRIPT)
            self.page = await self._context.new_page()
        except (PlaywrightError, AttributeError) as e:
            await self.close()
            raise NavigationFailure(f"Could not start {self.browser_type}: {e}") from e

    @property
    def url(self) -> str:
        return self.page.url if self.page else ""

    async def navigate_to(self, url: str, is_auth_flow: bool = False) -> bool:
        """
        Load ``url`` in the session page.

        The login flow waits only for ``domcontentloaded`` with a long timeout
        and then settles, since sign-in pages redirect several times. Every
        other navigation waits for network idle within the configured timeout.
        Timeouts grow by 15s on each retry.

        :return bool: whether the page loaded; errors are reported, never raised.
        """
        if self.page is None:
            self.reporter.error("browser.navigate_failed", "Browser is not initialized", url=url)
            return False

        if is_auth_flow:
            wait_until = "domcontentloaded"
            timeout = max(self.settings.timeout * 2, AUTH_NAVIGATION_TIMEOUT)
        else:
            wait_until = "networkidle"
            timeout = self.settings.timeout

        self.reporter.info("browser.navigate", f"Navigating to: {url}", url=url)
        attempts = self.settings.retry_attempts
        for attempt in range(attempts):
            try:
                await self.page.goto(url, wait_until=wait_until, timeout=timeout + attempt * 15000)
                if is_auth_flow:
                    await asyncio.sleep(AUTH_SETTLE_DELAY)
                return True
            except PlaywrightError as e:
                error = str(e).splitlines()[0][:150]
                # A network-idle timeout on a chatty page still leaves a usable document
                if "Timeout" in error and self.page.url not in ("", "about:blank"):
                    self.reporter.warning(
                        "browser.navigate_timeout",
                        f"Navigation timeout but page loaded: {self.page.url}",
                        url=url,
                    )
                    return True
                if attempt < attempts - 1:
                    wait_time = self.settings.retry_delay * (attempt + 1)
                    self.reporter.warning(
                        "browser.navigate_retry",
                        f"Navigation failed (attempt {attempt + 1}/{attempts}): {error}",
                        url=url,
                    )
                    await asyncio.sleep(wait_time)
                else:
                    self.reporter.error(
                        "browser.navigate_failed", f"Failed to navigate: {error}", url=url
                    )
        return False

    async def wait_for_auth(self) -> None:
        self.reporter.warning("auth.wait", "Please log in to the website in the browser window...")
        self.reporter.info(
            "auth.prompt",
            "Press Enter in the terminal once you are logged in and on the course page...",
        )
        await self.control_channel()
        self.reporter.info("auth.resumed", "Continuing with the download")

    async def expand_all_sections(self) -> int:
        """Click every collapsed section toggle that can be found; returns how many opened."""
        expanded = 0
        for selector in EXPAND_SELECTORS:
            try:
                elements = await self.page.locator(selector).all()
            except PlaywrightError:
                continue
            for element in elements:
                try:
                    await element.click(timeout=CLICK_TIMEOUT)
                    expanded += 1
                except PlaywrightError:
                    continue
        if expanded:
            self.reporter.debug("browser.expanded", f"Expanded {expanded} sections", count=expanded)
        await asyncio.sleep(self.settings.settle_delay)
        return expanded

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await self.page.evaluate(script, arg)

    async def wait_for_selector(self, selector: str, timeout: int) -> bool:
        try:
            await self.page.wait_for_selector(selector, timeout=timeout)
            return True
        except PlaywrightError:
            return False

    async def content(self) -> str:
        return await self.page.content()

    @asynccontextmanager
    async def network_traffic(self, handler: TrafficHandler) -> AsyncIterator[None]:
        """Forward ``(url, content_type)`` of every request and response to ``handler`` while open."""

        def on_request(request: Request):
            handler(request.url, None)

        def on_response(response: Response):
            handler(response.url, response.headers.get("content-type"))

        page = self.page
        page.on("request", on_request)
        page.on("response", on_response)
        try:
            yield
        finally:
            page.remove_listener("request", on_request)
            page.remove_listener("response", on_response)

    async def request_headers(self, url: str) -> dict[str, str]:
        """Headers that let an out-of-browser client fetch ``url`` with the session's login."""
        headers = {"User-Agent": self.settings.user_agent}
        if self.page is not None:
            headers["Referer"] = self.page.url
        if self._context is not None:
            cookies = await self._context.cookies([url])
            if cookies:
                headers["Cookie"] = "; ".join(f"{c['name']}={c['value']}" for c in cookies)
        return headers

    async def close(self) -> None:
        for handle in (self._context, self._browser):
            if handle is None:
                continue
            try:
                await handle.close()
            except PlaywrightError as e:
                self.reporter.debug("browser.close_error", f"Error while closing browser: {e}")
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                self.reporter.debug("browser.close_error", f"Error while stopping Playwright: {e}")
            self.reporter.info("browser.closed", "Browser closed")
        self.page = self._context = self._browser = self._playwright = None
