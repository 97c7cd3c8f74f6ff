"""파이프라인 오케스트레이터

소스별 Fetch → 정규화를 동시에 실행하고(소스마다 독립된 실패 영역),
모든 소스가 끝난 뒤 전체 기사에 대해 필터 → 중복 제거 → 분류를 수행한다.
"""

import asyncio
import os
import re
import time
from datetime import timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from feed_collector.bypass.browser_session import BrowserSession
from feed_collector.bypass.session_runner import BypassSessionRunner
from feed_collector.classification.rule_classifier import RuleClassifier
from feed_collector.dedup.dedup_engine import DeduplicationEngine
from feed_collector.ingestion.circuit_breaker import CircuitBreaker
from feed_collector.ingestion.fetch_stage import FetchStage
from feed_collector.ingestion.rss_connector import RSSConnector
from feed_collector.models.errors import ErrorKind, FetchError
from feed_collector.models.news import Article
from feed_collector.models.pipeline_result import (
    STATUS_ERROR,
    STATUS_OK,
    PipelineResult,
    PipelineSummary,
    SourceResult,
)
from feed_collector.models.source import SourceConfig
from feed_collector.normalizer.article_normalizer import ArticleNormalizer
from feed_collector.utils.clock import Clock, utc_now
from feed_collector.utils.config_manager import ConfigManager
from feed_collector.utils.kv_store import InMemoryStore, JsonFileStore
from feed_collector.utils.logger import get_logger

logger = get_logger(__name__)

CIRCUIT_BREAKER_FILENAME = "circuit-breaker.json"


class FeedPipeline:
    """
    전체 수집 파이프라인.

    사용법:
        pipeline = build_pipeline(ConfigManager())
        result = pipeline.run_sync(registry.get_enabled_sources())
        for article in result.articles: ...
        pipeline.close_sync()
    """

    def __init__(
        self,
        fetch_stage: FetchStage,
        normalizer: ArticleNormalizer,
        deduplicator: DeduplicationEngine,
        classifier: RuleClassifier,
        max_concurrency: int = 8,
        rejected_url_patterns: Sequence[str] = (),
        recent_count: int = 5,
        clock: Clock = utc_now,
    ) -> None:
        self.fetch_stage = fetch_stage
        self.normalizer = normalizer
        self.deduplicator = deduplicator
        self.classifier = classifier
        self.max_concurrency = max(1, max_concurrency)
        self.recent_count = recent_count
        self._rejected = [re.compile(p, re.IGNORECASE) for p in rejected_url_patterns]
        self._clock = clock

    def run_sync(
        self, sources: List[SourceConfig], known_ids: Optional[Iterable[str]] = None
    ) -> PipelineResult:
        """동기 진입점. 이미 이벤트 루프가 돌고 있으면 별도 스레드에서 실행."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop and loop.is_running():
            # 이미 이벤트 루프가 실행 중이면 (Jupyter 등)
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor() as pool:
                return pool.submit(asyncio.run, self.run(sources, known_ids)).result()
        return asyncio.run(self.run(sources, known_ids))

    async def run(
        self, sources: List[SourceConfig], known_ids: Optional[Iterable[str]] = None
    ) -> PipelineResult:
        """
        활성 소스 전체 수집.

        Args:
            sources: 소스 설정 (순서 유지, 비활성 소스는 건너뜀).
            known_ids: 이전 실행에서 이미 발행된 기사 식별자.

        Returns:
            PipelineResult (기사 목록 + 소스별 메타데이터 + 집계).
        """
        started = time.monotonic()
        timestamp = self._clock()
        active = [s for s in sources if s.enabled]
        skipped = len(sources) - len(active)
        logger.info("수집 시작: %d개 소스%s", len(active), f" (비활성 {skipped}개 제외)" if skipped else "")

        semaphore = asyncio.Semaphore(self.max_concurrency)
        outcomes = await asyncio.gather(
            *(self._run_source(source, semaphore) for source in active),
            return_exceptions=True,
        )

        # 모든 소스가 끝난 뒤 전역 처리
        source_results: List[SourceResult] = []
        collected: List[Article] = []
        for source, outcome in zip(active, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("소스 처리 중 예기치 못한 오류: %s - %s", source.name, outcome)
                outcome = (self._error_result(source, outcome, 0), [])
            result, articles = outcome
            source_results.append(result)
            collected.extend(articles)

        valid = [a for a in collected if self._is_valid(a)]
        if len(valid) != len(collected):
            logger.info("필터 제외: %d건", len(collected) - len(valid))

        unique = self.deduplicator.deduplicate(valid, known_ids=known_ids)
        classified = self.classifier.classify_batch(unique)

        kept_by_source = {}
        for article in classified:
            kept_by_source[article.source_url] = kept_by_source.get(article.source_url, 0) + 1
        for result in source_results:
            result.kept = kept_by_source.get(result.source_url, 0)

        summary = PipelineSummary(
            timestamp=timestamp,
            total_sources=len(source_results),
            succeeded=sum(1 for r in source_results if r.ok),
            failed=sum(1 for r in source_results if not r.ok),
            total_raw=sum(r.raw_count for r in source_results),
            total_kept=len(classified),
            duration_ms=int((time.monotonic() - started) * 1000),
            recent_articles=self._most_recent(classified),
        )
        logger.info(
            "수집 완료: 성공 %d/%d, 원본 %d건 → 유지 %d건 (%dms)",
            summary.succeeded, summary.total_sources, summary.total_raw,
            summary.total_kept, summary.duration_ms,
        )
        return PipelineResult(
            articles=classified,
            sources=source_results,
            summary=summary,
            blocked_sources=self.fetch_stage.breaker.blocked_sources(),
        )

    async def _run_source(
        self, source: SourceConfig, semaphore: asyncio.Semaphore
    ) -> Tuple[SourceResult, List[Article]]:
        """소스 하나: Fetch → 정규화. 실패는 메타데이터로 변환해 반환한다."""
        async with semaphore:
            started = time.monotonic()
            try:
                records = await self.fetch_stage.fetch(source)
            except Exception as e:
                elapsed = int((time.monotonic() - started) * 1000)
                return self._error_result(source, e, elapsed), []

            articles = self.normalizer.normalize_batch(records)
            elapsed = int((time.monotonic() - started) * 1000)
            logger.info("소스 수집: %s → %d건 (%dms)", source.name, len(records), elapsed)
            return SourceResult(
                source_name=source.name,
                source_url=source.url,
                status=STATUS_OK,
                raw_count=len(records),
                duration_ms=elapsed,
                via_bypass=any(r.via_bypass for r in records),
            ), articles

    def _error_result(self, source: SourceConfig, error: Exception, elapsed_ms: int) -> SourceResult:
        if isinstance(error, FetchError):
            kind, message = error.kind, error.message
        else:
            kind, message = ErrorKind.FETCH_FAILED, str(error) or type(error).__name__

        if kind == ErrorKind.CIRCUIT_OPEN:
            logger.warning("소스 건너뜀 (서킷 열림): %s - %s", source.name, message)
        else:
            logger.error("소스 수집 실패: %s - [%s] %s", source.name, kind.value, message)
        return SourceResult(
            source_name=source.name,
            source_url=source.url,
            status=STATUS_ERROR,
            error=message,
            error_kind=kind,
            duration_ms=elapsed_ms,
        )

    def _is_valid(self, article: Article) -> bool:
        if not article.title and not article.link:
            return False
        return not any(p.search(article.link) for p in self._rejected) if article.link else True

    def _most_recent(self, articles: List[Article]) -> List[Article]:
        dated = [a for a in articles if a.published_at is not None]
        dated.sort(key=lambda a: a.published_at, reverse=True)
        return dated[: self.recent_count]

    async def close(self) -> None:
        """공유 브라우저 세션 종료."""
        if self.fetch_stage.bypass_runner is not None:
            await self.fetch_stage.bypass_runner.close()

    def close_sync(self) -> None:
        asyncio.run(self.close())


def build_pipeline(
    config: Optional[ConfigManager] = None,
    browser: Optional[BrowserSession] = None,
    clock: Clock = utc_now,
) -> FeedPipeline:
    """설정으로 파이프라인 전체 구성."""
    config = config or ConfigManager()
    data_dir = config.get("bypass.data_dir", ".browser-cache")

    if config.get_bool("circuit_breaker.persist", False):
        breaker_store = JsonFileStore(os.path.join(data_dir, CIRCUIT_BREAKER_FILENAME))
    else:
        breaker_store = InMemoryStore()
    breaker = CircuitBreaker(
        store=breaker_store,
        max_failures=config.get_int("circuit_breaker.max_failures", 3),
        cooldown=timedelta(hours=config.get_float("circuit_breaker.cooldown_hours", 24)),
        clock=clock,
    )

    bypass_runner = None
    if config.get_bool("bypass.enabled", True):
        bypass_runner = BypassSessionRunner.from_config(config, browser=browser, clock=clock)

    fetch_stage = FetchStage(
        connector=RSSConnector(
            user_agent=config.get("fetch.user_agent"),
            accept=config.get("fetch.accept"),
        ),
        breaker=breaker,
        bypass_runner=bypass_runner,
        timeout=config.get_float("fetch.timeout_seconds", 20),
        bypass_timeout=config.get_float("bypass.timeout_seconds", 180),
        clock=clock,
    )
    return FeedPipeline(
        fetch_stage=fetch_stage,
        normalizer=ArticleNormalizer(clock=clock),
        deduplicator=DeduplicationEngine(),
        classifier=RuleClassifier.from_config(config),
        max_concurrency=config.get_int("pipeline.max_concurrency", 8),
        rejected_url_patterns=config.get_list("filtering.rejected_url_patterns", []),
        recent_count=config.get_int("pipeline.recent_articles", 5),
        clock=clock,
    )
