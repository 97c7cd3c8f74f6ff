"""공유 테스트 fixture"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import yaml

from feed_collector.bypass.browser_session import BrowserPage, BrowserSession
from feed_collector.utils.config_manager import ConfigManager


# 테스트 기준 시각 (결정론적 테스트용)
REFERENCE_TIME = datetime(2026, 2, 5, 14, 0, 0, tzinfo=timezone.utc)

CHALLENGE_HTML = """<!DOCTYPE html>
<html><head><title>Just a moment...</title></head>
<body><div id="cf-browser-verification">Checking your browser before accessing.</div>
<div class="challenge-platform"></div></body></html>"""

SAMPLE_RSS_XML = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Test Feed</title>
    <item>
      <title>Prologis acquires Edison warehouse</title>
      <link>https://example.com/news/1</link>
      <guid>https://example.com/?p=1</guid>
      <description>&lt;p&gt;The logistics giant bought a 300,000 SF building.&lt;/p&gt;</description>
      <pubDate>Thu, 05 Feb 2026 10:00:00 +0000</pubDate>
      <dc:creator>Jane Doe</dc:creator>
    </item>
    <item>
      <title>Developer breaks ground on spec industrial park</title>
      <link>https://example.com/news/2</link>
      <description>Construction begins on a speculative project.</description>
      <pubDate>Thu, 05 Feb 2026 09:00:00 +0000</pubDate>
    </item>
  </channel>
</rss>"""


class FakeClock:
    """수동으로 진행시키는 시계."""

    def __init__(self, now: datetime = REFERENCE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakePage(BrowserPage):
    """URL별로 정해진 콘텐츠를 돌려주는 페이지."""

    def __init__(self, session: "FakeBrowserSession") -> None:
        self._session = session
        self.current_url = ""

    async def goto(self, url: str, timeout: float) -> None:
        self._session.visited.append(url)
        if url in self._session.errors:
            raise self._session.errors[url]
        self.current_url = url

    async def content(self) -> str:
        pages = self._session.pages.get(self.current_url, "")
        if isinstance(pages, list):
            # 호출할 때마다 다음 콘텐츠 (챌린지가 풀리는 과정 흉내)
            return pages.pop(0) if len(pages) > 1 else pages[0]
        return pages

    async def cookies(self) -> List[Dict[str, Any]]:
        return list(self._session.cookies_to_return)

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        self._session.restored_cookies.extend(cookies)


class FakeBrowserSession(BrowserSession):
    """테스트용 브라우저 세션."""

    def __init__(self, pages: Optional[Dict[str, Any]] = None) -> None:
        self.pages: Dict[str, Any] = pages or {}
        self.errors: Dict[str, Exception] = {}
        self.visited: List[str] = []
        self.cookies_to_return: List[Dict[str, Any]] = []
        self.restored_cookies: List[Dict[str, Any]] = []
        self.sessions = 0
        self.closed = False

    async def _acquire_page(self) -> BrowserPage:
        self.sessions += 1
        return FakePage(self)

    async def _release_page(self, page: BrowserPage) -> None:
        pass

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def reference_time() -> datetime:
    """고정된 기준 시각."""
    return REFERENCE_TIME


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_browser() -> FakeBrowserSession:
    return FakeBrowserSession()


@pytest.fixture
def challenge_html() -> str:
    return CHALLENGE_HTML


@pytest.fixture
def sample_rss() -> str:
    return SAMPLE_RSS_XML


@pytest.fixture
def config_dir() -> str:
    """실제 config 디렉토리 경로."""
    return str(Path(__file__).parent.parent / "config")


@pytest.fixture
def config_manager(config_dir: str) -> ConfigManager:
    """실제 설정 파일 기반 ConfigManager."""
    return ConfigManager(config_dir=config_dir)


@pytest.fixture
def classification_rules(config_manager: ConfigManager) -> Dict[str, Any]:
    """분류 규칙 테이블."""
    return config_manager.get_section("classification")


@pytest.fixture
def tmp_config_dir():
    """임시 config 디렉토리 (단위 테스트용)."""
    with tempfile.TemporaryDirectory() as tmpdir:
        config_data = {
            "pipeline": {"max_concurrency": 2, "recent_articles": 3},
            "fetch": {"timeout_seconds": 5},
            "circuit_breaker": {"max_failures": 3, "cooldown_hours": 24, "persist": True},
            "bypass": {
                "enabled": True,
                "allowlist": ["blocked.example.com"],
                "max_runs_per_domain_per_day": 2,
                "cache_ttl_hours": 12,
                "data_dir": os.path.join(tmpdir, "state"),
                "challenge_waits": [0, 0, 0],
            },
            "filtering": {"rejected_url_patterns": ["/video/"]},
        }
        sources_data = {
            "sources": [
                {"name": "Alpha", "url": "https://alpha.example.com/feed", "region": "NJ"},
                {"name": "Beta", "url": "https://beta.example.com/feed", "region": "TX"},
                {"name": "Beta Copy", "url": "https://beta.example.com/feed", "region": "TX"},
                {"name": "Gamma", "url": "https://gamma.example.com/feed", "region": "NJ",
                 "enabled": "false"},
                {"name": "No URL", "region": "FL"},
                "not-a-mapping",
            ],
        }
        with open(os.path.join(tmpdir, "config.yaml"), "w", encoding="utf-8") as f:
            yaml.dump(config_data, f, allow_unicode=True)
        with open(os.path.join(tmpdir, "sources_registry.yaml"), "w", encoding="utf-8") as f:
            yaml.dump(sources_data, f, allow_unicode=True)

        yield tmpdir
