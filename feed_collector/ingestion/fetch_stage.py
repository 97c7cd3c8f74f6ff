"""소스 Fetch 단계

소스 하나의 피드를 가져와 RawRecord 목록으로 만든다. 서킷 브레이커로 감싸며,
안티봇 챌린지에 막힌 허용 도메인은 우회 세션 실행기로 넘긴다.

실패는 FetchError로 올라가고, 오케스트레이터가 소스별 메타데이터로 변환한다.
"""

import asyncio
from typing import List, Optional

from feed_collector.bypass.challenge_detector import is_challenge
from feed_collector.bypass.session_runner import BypassSessionRunner, OriginalResponse
from feed_collector.ingestion.base_connector import BaseConnector, HttpResponse
from feed_collector.ingestion.circuit_breaker import CircuitBreaker
from feed_collector.models.errors import ErrorKind, FetchError
from feed_collector.models.raw_news import RawRecord
from feed_collector.models.source import SourceConfig
from feed_collector.utils.clock import Clock, utc_now
from feed_collector.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 20.0
DEFAULT_BYPASS_TIMEOUT = 180.0


class FetchStage:
    """
    서킷 브레이커 + 직접 요청 + 우회 경로.

    사용법:
        stage = FetchStage(RSSConnector(), CircuitBreaker(), bypass_runner)
        records = await stage.fetch(source)   # 실패 시 FetchError
    """

    def __init__(
        self,
        connector: BaseConnector,
        breaker: CircuitBreaker,
        bypass_runner: Optional[BypassSessionRunner] = None,
        timeout: float = DEFAULT_TIMEOUT,
        bypass_timeout: float = DEFAULT_BYPASS_TIMEOUT,
        clock: Clock = utc_now,
    ) -> None:
        self.connector = connector
        self.breaker = breaker
        self.bypass_runner = bypass_runner
        self.timeout = timeout
        self.bypass_timeout = bypass_timeout
        self._clock = clock

    async def fetch(self, source: SourceConfig) -> List[RawRecord]:
        """소스 피드 수집. 성공 시 브레이커 리셋, 집계 대상 실패 시 실패 누적."""
        url = source.url

        if self.breaker.is_open(url):
            state = self.breaker.get_state(url)
            until = state.blocked_until_dt
            raise FetchError(
                ErrorKind.CIRCUIT_OPEN,
                f"Circuit open until {until.isoformat() if until else 'unknown'}"
                f" (last error: {state.last_error or 'Unknown'})",
            )

        try:
            records = await self._fetch_records(source)
        except FetchError as e:
            if e.counts_as_failure:
                self.breaker.record_failure(url, e.message)
            raise
        except Exception as e:
            # 예상 못 한 예외도 실패로 누적
            self.breaker.record_failure(url, str(e) or type(e).__name__)
            raise

        self.breaker.record_success(url)
        return records

    async def _fetch_records(self, source: SourceConfig) -> List[RawRecord]:
        response = await self.connector.retrieve(source.url, self.timeout)
        via_bypass = False

        if is_challenge(response.body, response.status):
            if self._bypass_allowed(source.url):
                logger.info("챌린지 감지, 우회 경로로 전환: %s", source.name)
                content = await self._bypass(source, response)
                via_bypass = True
            else:
                raise FetchError(
                    ErrorKind.FETCH_FAILED,
                    f"HTTP {response.status} (anti-bot challenge, bypass not available)",
                )
        elif not response.ok:
            raise FetchError(ErrorKind.FETCH_FAILED, f"HTTP {response.status}")
        else:
            content = response.body

        entries = self.connector.parse_feed(content)
        fetched_at = self._clock()
        return [
            RawRecord(
                source_name=source.name,
                source_url=source.url,
                region=source.region,
                payload=entry,
                fetched_at=fetched_at,
                via_bypass=via_bypass,
            )
            for entry in entries
        ]

    def _bypass_allowed(self, url: str) -> bool:
        return self.bypass_runner is not None and self.bypass_runner.is_allowlisted(url)

    async def _bypass(self, source: SourceConfig, response: HttpResponse) -> str:
        """우회 세션 실행. 거부는 브레이커 실패로 세지 않고, 타임아웃과 브라우저 오류만 센다."""
        try:
            result = await asyncio.wait_for(
                self.bypass_runner.fetch(source.url, OriginalResponse(response.status, response.body)),
                timeout=self.bypass_timeout,
            )
        except asyncio.TimeoutError:
            raise FetchError(
                ErrorKind.FETCH_FAILED,
                f"Bypass timed out after {self.bypass_timeout:.0f}s",
            )

        if not result.success:
            # 우회 거부는 세지 않고 브라우저 오류만 누적
            browser_error = result.used_browser and result.error_kind == ErrorKind.FETCH_FAILED
            raise FetchError(
                result.error_kind or ErrorKind.FETCH_FAILED,
                f"Bypass failed: {result.error}",
                counts_as_failure=browser_error,
            )

        if result.from_cache:
            logger.debug("우회 캐시 콘텐츠 사용: %s", source.name)
        return result.content or ""
