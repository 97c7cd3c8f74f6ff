"""챌린지 우회 세션 실행기

Cloudflare 등 안티봇 챌린지에 막힌 피드를 헤드리스 브라우저로 받아오는 최후 수단.

가드레일:
- 허용 목록(allowlist) 도메인만
- 실제 챌린지 응답일 때만
- URL별 결과 캐시 (기본 12시간)
- 도메인별 일일 세션 횟수 제한 (기본 10회, 세션 시작 전에 차감)
- 도메인별 쿠키(cf_clearance 포함) 저장 후 다음 세션에서 복원
"""

import asyncio
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from feed_collector.bypass.browser_session import (
    DEFAULT_USER_AGENT,
    BrowserPage,
    BrowserSession,
    SeleniumBrowserSession,
)
from feed_collector.bypass.challenge_detector import extract_feed_fragment, is_challenge, looks_like_feed
from feed_collector.bypass.stores import (
    CACHE_FILENAME,
    COOKIES_FILENAME,
    RATE_LIMIT_FILENAME,
    BypassCache,
    CookieStore,
    RateLimiter,
    clearance_cookies,
)
from feed_collector.models.errors import ErrorKind
from feed_collector.utils.clock import Clock, utc_now
from feed_collector.utils.config_manager import ConfigManager
from feed_collector.utils.kv_store import JsonFileStore
from feed_collector.utils.logger import get_logger
from feed_collector.utils.url_utils import domain_matches, get_domain, get_origin

logger = get_logger(__name__)

FEED_LINK_TYPES = ["application/rss+xml", "application/atom+xml"]
DEFAULT_CHALLENGE_WAITS = (3.0, 10.0, 15.0)


@dataclass
class OriginalResponse:
    """우회를 촉발한 직접 요청의 응답."""

    status: int
    body: str


@dataclass
class BypassResult:
    """우회 시도 결과."""

    url: str
    success: bool = False
    content: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    from_cache: bool = False
    used_browser: bool = False
    remaining: Optional[int] = None
    limit: Optional[int] = None


def find_feed_link(html: str, base_url: str) -> Optional[str]:
    """렌더링된 HTML에서 RSS/Atom <link> 찾기. 상대 경로는 절대 URL로 변환."""
    if not html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    link = soup.find("link", attrs={"type": FEED_LINK_TYPES, "href": True})
    if link is None:
        return None
    href = link.get("href", "").strip()
    if not href:
        return None
    return href if href.startswith("http") else urljoin(base_url, href)


def alternate_feed_urls(url: str) -> List[str]:
    """관례적인 피드 경로 추측."""
    origin = get_origin(url)
    separator = "&" if "?" in url else "?"
    return [
        f"{origin}/feed/rss/",
        f"{origin}/rss.xml",
        f"{url}{separator}format=xml",
    ]


class BypassSessionRunner:
    """
    우회 상태 머신.

    1. 허용 목록 확인 → NotAllowlisted
    2. 챌린지 재확인 → NotAChallenge
    3. 캐시 확인 → 히트 시 즉시 반환 (쿼터 소모 없음)
    4. 레이트 리밋 확인 → RateLimited
    5. 쿼터 차감 후 브라우저 세션 실행
    6. 결과와 무관하게 쿠키 저장
    7. 피드 조각 추출 → 캐시 저장 → 성공

    사용법:
        runner = BypassSessionRunner.from_config(config)
        result = await runner.fetch(url, OriginalResponse(403, body))
        await runner.close()
    """

    def __init__(
        self,
        browser: BrowserSession,
        cache: BypassCache,
        rate_limiter: RateLimiter,
        cookie_store: CookieStore,
        allowlist: Sequence[str],
        navigation_timeout: float = 60.0,
        feed_link_timeout: float = 30.0,
        alternate_timeout: float = 15.0,
        challenge_waits: Sequence[float] = DEFAULT_CHALLENGE_WAITS,
        feed_link_wait: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._browser = browser
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._cookies = cookie_store
        self._allowlist = [d.lower() for d in allowlist]
        self._navigation_timeout = navigation_timeout
        self._feed_link_timeout = feed_link_timeout
        self._alternate_timeout = alternate_timeout
        self._challenge_waits = list(challenge_waits) or [0.0]
        self._feed_link_wait = feed_link_wait
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: ConfigManager,
        browser: Optional[BrowserSession] = None,
        clock: Clock = utc_now,
    ) -> "BypassSessionRunner":
        """config.yaml의 bypass 섹션으로 생성. 저장소는 data_dir 아래 JSON 파일."""
        data_dir = config.get("bypass.data_dir", ".browser-cache")
        if browser is None:
            browser = SeleniumBrowserSession(
                headless=config.get_bool("bypass.headless", True),
                user_agent=config.get("fetch.user_agent") or DEFAULT_USER_AGENT,
            )
        waits = config.get_list("bypass.challenge_waits", list(DEFAULT_CHALLENGE_WAITS))
        return cls(
            browser=browser,
            cache=BypassCache(
                JsonFileStore(os.path.join(data_dir, CACHE_FILENAME)),
                ttl=timedelta(hours=config.get_float("bypass.cache_ttl_hours", 12)),
                clock=clock,
            ),
            rate_limiter=RateLimiter(
                JsonFileStore(os.path.join(data_dir, RATE_LIMIT_FILENAME)),
                max_per_day=config.get_int("bypass.max_runs_per_domain_per_day", 10),
                clock=clock,
            ),
            cookie_store=CookieStore(
                JsonFileStore(os.path.join(data_dir, COOKIES_FILENAME)),
                clock=clock,
            ),
            allowlist=config.get_list("bypass.allowlist", []),
            navigation_timeout=config.get_float("bypass.navigation_timeout_seconds", 60),
            feed_link_timeout=config.get_float("bypass.feed_link_timeout_seconds", 30),
            alternate_timeout=config.get_float("bypass.alternate_timeout_seconds", 15),
            challenge_waits=[float(w) for w in waits],
        )

    @property
    def allowlist(self) -> List[str]:
        return list(self._allowlist)

    def is_allowlisted(self, url: str) -> bool:
        return domain_matches(get_domain(url), self._allowlist)

    async def fetch(self, url: str, original: Optional[OriginalResponse] = None) -> BypassResult:
        """
        챌린지로 막힌 피드 URL을 브라우저로 가져온다.

        Args:
            url: 피드 URL.
            original: 직접 요청의 응답. 주어지면 챌린지인지 재확인한다.

        Returns:
            BypassResult (예외를 던지지 않음).
        """
        domain = get_domain(url)

        if not self.is_allowlisted(url):
            return BypassResult(
                url=url,
                error=f"Domain {domain or '(none)'} not in bypass allowlist",
                error_kind=ErrorKind.NOT_ALLOWLISTED,
            )

        if original is not None and not is_challenge(original.body, original.status):
            return BypassResult(
                url=url,
                error="Not an anti-bot challenge - browser session not needed",
                error_kind=ErrorKind.NOT_A_CHALLENGE,
            )

        cached = await asyncio.to_thread(self._cache.get, url)
        if cached is not None:
            logger.info("우회 캐시 사용: %s", url)
            return BypassResult(url=url, success=True, content=cached, from_cache=True)

        remaining, limit = await asyncio.to_thread(self._rate_limiter.status, domain)
        if remaining <= 0:
            logger.warning("우회 일일 한도 초과: %s (%d/%d 남음)", domain, remaining, limit)
            return BypassResult(
                url=url,
                error=f"Rate limit exceeded for {domain} ({remaining}/{limit} remaining today)",
                error_kind=ErrorKind.RATE_LIMITED,
                remaining=remaining,
                limit=limit,
            )

        logger.info("챌린지 우회 시도: %s (오늘 %d/%d회 남음)", url, remaining, limit)
        await asyncio.to_thread(self._rate_limiter.increment, domain)
        remaining -= 1

        try:
            content = await self._run_session(url, domain)
        except Exception as e:
            logger.error("우회 세션 실패: %s - %s", url, e)
            return BypassResult(
                url=url,
                error=f"Browser session failed: {e}",
                error_kind=ErrorKind.FETCH_FAILED,
                used_browser=True,
                remaining=remaining,
                limit=limit,
            )

        if looks_like_feed(content):
            fragment = extract_feed_fragment(content)
            await asyncio.to_thread(self._cache.put, url, fragment)
            logger.info("우회 성공: %s (%d자)", url, len(fragment))
            return BypassResult(
                url=url,
                success=True,
                content=fragment,
                used_browser=True,
                remaining=remaining,
                limit=limit,
            )

        if is_challenge(content):
            logger.warning("챌린지 미해결: %s", url)
            return BypassResult(
                url=url,
                error="Challenge not solved - may need manual intervention",
                error_kind=ErrorKind.CHALLENGE_UNSOLVED,
                used_browser=True,
                remaining=remaining,
                limit=limit,
            )

        logger.warning("피드 대신 HTML 수신: %s", url)
        return BypassResult(
            url=url,
            error="Got HTML instead of a feed - feed may not exist",
            error_kind=ErrorKind.NOT_A_FEED,
            used_browser=True,
            remaining=remaining,
            limit=limit,
        )

    async def _run_session(self, url: str, domain: str) -> str:
        """브라우저로 이동 → 챌린지 대기 → 피드 링크/관례 경로 탐색. 최종 문서 반환."""
        async with self._browser.page() as page:
            try:
                saved = await asyncio.to_thread(self._cookies.load, domain)
                if saved:
                    try:
                        await page.add_cookies(saved)
                        logger.info("쿠키 %d개 복원: %s", len(saved), domain)
                    except Exception as e:
                        logger.warning("쿠키 복원 실패: %s - %s", domain, e)

                logger.debug("브라우저 이동: %s", url)
                await page.goto(url, timeout=self._navigation_timeout)
                content = await self._wait_out_challenge(page)

                if not looks_like_feed(content):
                    content = await self._discover_feed(page, url, content)
                return content
            finally:
                await self._persist_cookies(page, domain)

    async def _wait_out_challenge(self, page: BrowserPage) -> str:
        """챌린지 페이지면 점점 길게 대기하며 재확인."""
        await self._sleep(self._challenge_waits[0])
        content = await page.content()
        for wait in self._challenge_waits[1:]:
            if not is_challenge(content):
                break
            logger.info("챌린지 진행 중, %.0f초 추가 대기", wait)
            await self._sleep(wait)
            content = await page.content()
        return content

    async def _discover_feed(self, page: BrowserPage, url: str, content: str) -> str:
        """HTML을 받은 경우: <link rel=alternate> → 관례 경로 순으로 피드 탐색."""
        feed_link = find_feed_link(content, url)
        if feed_link:
            logger.info("피드 링크 발견: %s", feed_link)
            try:
                await page.goto(feed_link, timeout=self._feed_link_timeout)
                await self._sleep(self._feed_link_wait)
                content = await page.content()
            except Exception as e:
                logger.debug("피드 링크 이동 실패: %s - %s", feed_link, e)

        if looks_like_feed(content):
            return content

        for alt_url in alternate_feed_urls(url):
            try:
                logger.debug("대체 피드 경로 시도: %s", alt_url)
                await page.goto(alt_url, timeout=self._alternate_timeout)
                alt_content = await page.content()
            except Exception as e:
                logger.debug("대체 경로 실패: %s - %s", alt_url, e)
                continue
            if looks_like_feed(alt_content):
                logger.info("대체 경로에서 피드 발견: %s", alt_url)
                return alt_content
        return content

    async def _persist_cookies(self, page: BrowserPage, domain: str) -> None:
        try:
            cookies = await page.cookies()
        except Exception as e:
            logger.warning("쿠키 수집 실패: %s - %s", domain, e)
            return
        cf_count = len(clearance_cookies(cookies))
        if cf_count:
            logger.info("Cloudflare 쿠키 %d개 저장: %s", cf_count, domain)
        await asyncio.to_thread(self._cookies.save, domain, cookies)

    def stats(self) -> Dict[str, Any]:
        """모니터링용 현황: 허용 목록, 도메인별 사용량, 캐시 크기, 쿠키 보유 도메인."""
        return {
            "allowlist": self.allowlist,
            "rate_limits": self._rate_limiter.snapshot(self._allowlist),
            "cache_size": self._cache.size(),
            "cookie_domains": self._cookies.domains(),
        }

    async def close(self) -> None:
        await self._browser.close()
