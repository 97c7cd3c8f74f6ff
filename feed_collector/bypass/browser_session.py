"""헤드리스 브라우저 세션

우회 세션 실행기가 사용하는 브라우저 추상화와 Selenium(Chrome) 구현.

- 브라우저는 프로세스 내 1개를 지연 생성해 재사용하고 close()로 명시 종료
- page()는 async 컨텍스트 매니저: 획득 시 쿠키 초기화, 반납 시 빈 페이지로 이동
- 드라이버 호출은 블로킹이므로 asyncio.to_thread로 워커 스레드에서 실행
- 테스트에서는 BrowserSession을 구현한 가짜 세션으로 교체
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from feed_collector.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)

# CDP Network.setCookie가 받는 필드
_CDP_COOKIE_FIELDS = ("name", "value", "domain", "path", "secure", "httpOnly", "sameSite", "expires")

_HIDE_WEBDRIVER_JS = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'languages', {get: () => ['en-US', 'en']});
window.chrome = window.chrome || {runtime: {}};
"""


class BrowserPage(ABC):
    """세션 한 번 동안 사용하는 페이지 핸들."""

    @abstractmethod
    async def goto(self, url: str, timeout: float) -> None:
        """URL로 이동하고 네트워크가 잠잠해질 때까지 대기."""
        ...

    @abstractmethod
    async def content(self) -> str:
        """현재 렌더링된 문서."""
        ...

    @abstractmethod
    async def cookies(self) -> List[Dict[str, Any]]:
        """세션에서 관찰된 전체 쿠키 (HttpOnly 포함)."""
        ...

    @abstractmethod
    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        ...


class BrowserSession(ABC):
    """공유 브라우저 리소스."""

    @asynccontextmanager
    async def page(self) -> AsyncIterator[BrowserPage]:
        page = await self._acquire_page()
        try:
            yield page
        finally:
            await self._release_page(page)

    @abstractmethod
    async def _acquire_page(self) -> BrowserPage:
        ...

    @abstractmethod
    async def _release_page(self, page: BrowserPage) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """브라우저 종료. 이후 page() 호출 시 다시 생성된다."""
        ...


class SeleniumPage(BrowserPage):
    """Selenium WebDriver 위의 페이지 핸들."""

    def __init__(self, driver: Any) -> None:
        self._driver = driver

    async def goto(self, url: str, timeout: float) -> None:
        await asyncio.to_thread(self._goto_sync, url, timeout)

    def _goto_sync(self, url: str, timeout: float) -> None:
        from selenium.webdriver.support.ui import WebDriverWait

        self._driver.set_page_load_timeout(timeout)
        self._driver.get(url)
        WebDriverWait(self._driver, timeout).until(
            lambda d: d.execute_script("return document.readyState") == "complete"
        )

    async def content(self) -> str:
        return await asyncio.to_thread(lambda: self._driver.page_source or "")

    async def cookies(self) -> List[Dict[str, Any]]:
        result = await asyncio.to_thread(
            self._driver.execute_cdp_cmd, "Network.getAllCookies", {}
        )
        return list((result or {}).get("cookies", []))

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        await asyncio.to_thread(self._add_cookies_sync, cookies)

    def _add_cookies_sync(self, cookies: List[Dict[str, Any]]) -> None:
        for cookie in cookies:
            params = {k: cookie[k] for k in _CDP_COOKIE_FIELDS if k in cookie}
            if "name" not in params or "value" not in params:
                continue
            # 세션 쿠키는 expires=-1로 저장됨
            expires = params.get("expires")
            if isinstance(expires, (int, float)) and expires < 0:
                params.pop("expires")
            self._driver.execute_cdp_cmd("Network.setCookie", params)


class SeleniumBrowserSession(BrowserSession):
    """
    헤드리스 Chrome 1개를 공유하는 세션.

    사용법:
        session = SeleniumBrowserSession()
        async with session.page() as page:
            await page.goto("https://example.com/feed/", timeout=60)
            html = await page.content()
        await session.close()
    """

    def __init__(
        self,
        headless: bool = True,
        user_agent: str = DEFAULT_USER_AGENT,
        timezone_id: str = "America/New_York",
    ) -> None:
        self._headless = headless
        self._user_agent = user_agent
        self._timezone_id = timezone_id
        self._driver: Optional[Any] = None
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_open(self) -> bool:
        return self._driver is not None

    def _get_lock(self) -> asyncio.Lock:
        # 이벤트 루프가 바뀌면(run_sync 반복 호출) 락도 새로 만든다
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _ensure_driver(self) -> Any:
        if self._driver is not None:
            return self._driver

        from selenium import webdriver
        from selenium.webdriver.chrome.options import Options
        from selenium.webdriver.chrome.service import Service
        from webdriver_manager.chrome import ChromeDriverManager

        options = Options()
        if self._headless:
            options.add_argument("--headless=new")
        options.add_argument("--disable-blink-features=AutomationControlled")
        options.add_argument("--disable-dev-shm-usage")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-gpu")
        options.add_argument("--window-size=1920,1080")
        options.add_argument("--lang=en-US")
        options.add_argument(f"--user-agent={self._user_agent}")
        options.add_experimental_option("excludeSwitches", ["enable-automation"])

        logger.info("헤드리스 브라우저 시작")
        service = Service(ChromeDriverManager().install())
        driver = webdriver.Chrome(service=service, options=options)
        driver.execute_cdp_cmd("Network.enable", {})
        driver.execute_cdp_cmd("Page.addScriptToEvaluateOnNewDocument", {"source": _HIDE_WEBDRIVER_JS})
        driver.execute_cdp_cmd("Emulation.setTimezoneOverride", {"timezoneId": self._timezone_id})
        self._driver = driver
        return driver

    async def _acquire_page(self) -> BrowserPage:
        lock = self._get_lock()
        await lock.acquire()
        try:
            driver = await asyncio.to_thread(self._ensure_driver)
            # 호출마다 쿠키를 비워 도메인 간 상태가 섞이지 않게 한다
            await asyncio.to_thread(driver.execute_cdp_cmd, "Network.clearBrowserCookies", {})
        except BaseException:
            lock.release()
            raise
        return SeleniumPage(driver)

    async def _release_page(self, page: BrowserPage) -> None:
        try:
            if self._driver is not None:
                await asyncio.to_thread(self._driver.get, "about:blank")
        except Exception as e:
            logger.debug("페이지 정리 실패: %s", e)
        finally:
            if self._lock is not None and self._lock.locked():
                self._lock.release()

    async def close(self) -> None:
        if self._driver is None:
            return
        driver, self._driver = self._driver, None
        try:
            await asyncio.to_thread(driver.quit)
            logger.info("헤드리스 브라우저 종료")
        except Exception as e:
            logger.warning("브라우저 종료 실패: %s", e)
