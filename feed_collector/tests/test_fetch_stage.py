"""Fetch 단계 테스트: 서킷 브레이커 + 우회 경로 전환"""

import asyncio
from unittest.mock import MagicMock

import pytest

from feed_collector.bypass.session_runner import BypassResult, BypassSessionRunner
from feed_collector.bypass.stores import BypassCache, CookieStore, RateLimiter
from feed_collector.ingestion.base_connector import HttpResponse
from feed_collector.ingestion.circuit_breaker import CircuitBreaker
from feed_collector.ingestion.fetch_stage import FetchStage
from feed_collector.ingestion.rss_connector import RSSConnector
from feed_collector.models.errors import ErrorKind, FetchError
from feed_collector.models.source import SourceConfig
from feed_collector.utils.kv_store import InMemoryStore

SOURCE = SourceConfig(name="Example", url="https://example.com/feed", region="NJ")
BLOCKED_SOURCE = SourceConfig(name="ConnectCRE", url="https://www.connectcre.com/feed/", region="US")

CF_403_BODY = (
    "<!DOCTYPE html><html><head><title>Just a moment...</title></head>"
    '<body><div id="cf-browser-verification"></div></body></html>'
)


class SlowRunner:
    """타임아웃을 넘기는 우회 실행기."""

    def is_allowlisted(self, url):
        return True

    async def fetch(self, url, original=None):
        await asyncio.sleep(1)
        return BypassResult(url=url, success=True, content="<rss/>")


def _connector(*responses):
    connector = RSSConnector()
    connector._http_get = MagicMock(side_effect=list(responses))
    return connector


def _runner(browser, clock, max_per_day=10):
    return BypassSessionRunner(
        browser=browser,
        cache=BypassCache(InMemoryStore(), clock=clock),
        rate_limiter=RateLimiter(InMemoryStore(), max_per_day=max_per_day, clock=clock),
        cookie_store=CookieStore(InMemoryStore(), clock=clock),
        allowlist=["connectcre.com"],
        challenge_waits=(0, 0, 0),
        feed_link_wait=0,
    )


def _fetch(stage, source):
    return asyncio.run(stage.fetch(source))


class TestDirectFetch:

    def test_success_returns_records(self, clock, sample_rss):
        stage = FetchStage(_connector(HttpResponse(200, sample_rss)), CircuitBreaker(clock=clock), clock=clock)
        records = _fetch(stage, SOURCE)

        assert len(records) == 2
        assert records[0].source_name == "Example"
        assert records[0].source_url == SOURCE.url
        assert records[0].region == "NJ"
        assert records[0].fetched_at == clock()
        assert records[0].payload["title"] == "Prologis acquires Edison warehouse"
        assert not records[0].via_bypass

    def test_success_resets_breaker(self, clock, sample_rss):
        breaker = CircuitBreaker(clock=clock)
        breaker.record_failure(SOURCE.url, "earlier")
        stage = FetchStage(_connector(HttpResponse(200, sample_rss)), breaker, clock=clock)
        _fetch(stage, SOURCE)
        assert breaker.get_state(SOURCE.url).failure_count == 0

    def test_non_2xx_is_fetch_failed(self, clock):
        breaker = CircuitBreaker(clock=clock)
        stage = FetchStage(_connector(HttpResponse(500, "oops")), breaker, clock=clock)
        with pytest.raises(FetchError) as exc_info:
            _fetch(stage, SOURCE)
        assert exc_info.value.kind == ErrorKind.FETCH_FAILED
        assert breaker.get_state(SOURCE.url).failure_count == 1

    def test_parse_failure_counts(self, clock):
        breaker = CircuitBreaker(clock=clock)
        stage = FetchStage(_connector(HttpResponse(200, "<html>not a feed</html>")), breaker, clock=clock)
        with pytest.raises(FetchError) as exc_info:
            _fetch(stage, SOURCE)
        assert exc_info.value.kind == ErrorKind.PARSE_FAILED
        assert breaker.get_state(SOURCE.url).failure_count == 1

    def test_network_error_counts(self, clock):
        breaker = CircuitBreaker(clock=clock)
        stage = FetchStage(_connector(FetchError(ErrorKind.FETCH_FAILED, "refused")), breaker, clock=clock)
        with pytest.raises(FetchError):
            _fetch(stage, SOURCE)
        assert breaker.get_state(SOURCE.url).last_error == "refused"


class TestCircuitBreakerIntegration:

    def test_three_failures_then_circuit_open_without_network(self, clock):
        connector = _connector(*[HttpResponse(500, "down")] * 4)
        stage = FetchStage(connector, CircuitBreaker(clock=clock), clock=clock)

        for _ in range(3):
            with pytest.raises(FetchError) as exc_info:
                _fetch(stage, SOURCE)
            assert exc_info.value.kind == ErrorKind.FETCH_FAILED

        clock.advance(hours=23)
        with pytest.raises(FetchError) as exc_info:
            _fetch(stage, SOURCE)
        assert exc_info.value.kind == ErrorKind.CIRCUIT_OPEN
        assert connector._http_get.call_count == 3

    def test_circuit_open_does_not_add_failures(self, clock):
        breaker = CircuitBreaker(clock=clock)
        stage = FetchStage(_connector(*[HttpResponse(500, "down")] * 3), breaker, clock=clock)
        for _ in range(3):
            with pytest.raises(FetchError):
                _fetch(stage, SOURCE)
        with pytest.raises(FetchError):
            _fetch(stage, SOURCE)
        assert breaker.get_state(SOURCE.url).failure_count == 3

    def test_attempt_after_cooldown(self, clock, sample_rss):
        responses = [HttpResponse(500, "down")] * 3 + [HttpResponse(200, sample_rss)]
        breaker = CircuitBreaker(clock=clock)
        stage = FetchStage(_connector(*responses), breaker, clock=clock)
        for _ in range(3):
            with pytest.raises(FetchError):
                _fetch(stage, SOURCE)
        clock.advance(hours=24, seconds=1)
        assert len(_fetch(stage, SOURCE)) == 2
        assert not breaker.is_open(SOURCE.url)


class TestBypassRouting:

    def test_challenge_routed_to_bypass_without_breaker_failure(self, clock, fake_browser, sample_rss):
        fake_browser.pages[BLOCKED_SOURCE.url] = sample_rss
        breaker = CircuitBreaker(clock=clock)
        stage = FetchStage(
            _connector(HttpResponse(403, CF_403_BODY)), breaker, _runner(fake_browser, clock), clock=clock,
        )

        records = _fetch(stage, BLOCKED_SOURCE)

        assert len(records) == 2
        assert all(r.via_bypass for r in records)
        assert fake_browser.sessions == 1
        assert breaker.get_state(BLOCKED_SOURCE.url).failure_count == 0

    def test_bypass_rejection_does_not_trip_breaker(self, clock, fake_browser):
        breaker = CircuitBreaker(clock=clock)
        connector = _connector(*[HttpResponse(403, CF_403_BODY)] * 5)
        stage = FetchStage(connector, breaker, _runner(fake_browser, clock, max_per_day=0), clock=clock)

        for _ in range(5):
            with pytest.raises(FetchError) as exc_info:
                _fetch(stage, BLOCKED_SOURCE)
            assert exc_info.value.kind == ErrorKind.RATE_LIMITED

        assert not breaker.is_open(BLOCKED_SOURCE.url)
        assert breaker.get_state(BLOCKED_SOURCE.url).failure_count == 0
        assert fake_browser.sessions == 0

    def test_challenge_on_non_allowlisted_domain_fails(self, clock, fake_browser):
        breaker = CircuitBreaker(clock=clock)
        stage = FetchStage(
            _connector(HttpResponse(403, CF_403_BODY)), breaker, _runner(fake_browser, clock), clock=clock,
        )
        with pytest.raises(FetchError) as exc_info:
            _fetch(stage, SOURCE)
        assert exc_info.value.kind == ErrorKind.FETCH_FAILED
        assert breaker.get_state(SOURCE.url).failure_count == 1
        assert fake_browser.sessions == 0

    def test_challenge_without_runner_fails(self, clock):
        stage = FetchStage(_connector(HttpResponse(403, CF_403_BODY)), CircuitBreaker(clock=clock), clock=clock)
        with pytest.raises(FetchError) as exc_info:
            _fetch(stage, BLOCKED_SOURCE)
        assert exc_info.value.kind == ErrorKind.FETCH_FAILED

    def test_bypass_timeout_counts_as_failure(self, clock):
        breaker = CircuitBreaker(clock=clock)
        stage = FetchStage(
            _connector(HttpResponse(403, CF_403_BODY)), breaker, SlowRunner(),
            bypass_timeout=0.01, clock=clock,
        )
        with pytest.raises(FetchError) as exc_info:
            _fetch(stage, BLOCKED_SOURCE)
        assert exc_info.value.kind == ErrorKind.FETCH_FAILED
        assert breaker.get_state(BLOCKED_SOURCE.url).failure_count == 1

    def test_browser_crash_opens_breaker(self, clock, fake_browser):
        fake_browser.errors[BLOCKED_SOURCE.url] = RuntimeError("chrome crashed")
        breaker = CircuitBreaker(clock=clock)
        connector = _connector(*[HttpResponse(403, CF_403_BODY)] * 4)
        stage = FetchStage(connector, breaker, _runner(fake_browser, clock), clock=clock)

        kinds = []
        for _ in range(4):
            with pytest.raises(FetchError) as exc_info:
                _fetch(stage, BLOCKED_SOURCE)
            kinds.append(exc_info.value.kind)

        assert kinds == [ErrorKind.FETCH_FAILED] * 3 + [ErrorKind.CIRCUIT_OPEN]
        assert breaker.get_state(BLOCKED_SOURCE.url).failure_count == 3
        assert fake_browser.sessions == 3
        assert connector._http_get.call_count == 3


class TestUnexpectedErrors:

    def test_unexpected_exception_records_failure(self, clock, sample_rss):
        breaker = CircuitBreaker(clock=clock)
        connector = _connector(HttpResponse(200, sample_rss))
        connector.parse_feed = MagicMock(side_effect=ValueError("boom"))
        stage = FetchStage(connector, breaker, clock=clock)

        with pytest.raises(ValueError):
            _fetch(stage, SOURCE)

        state = breaker.get_state(SOURCE.url)
        assert state.failure_count == 1
        assert state.last_error == "boom"

    def test_three_unexpected_exceptions_open_breaker(self, clock, sample_rss):
        breaker = CircuitBreaker(clock=clock)
        connector = _connector(*[HttpResponse(200, sample_rss)] * 3)
        connector.parse_feed = MagicMock(side_effect=KeyError("entry"))
        stage = FetchStage(connector, breaker, clock=clock)

        for _ in range(3):
            with pytest.raises(KeyError):
                _fetch(stage, SOURCE)

        assert breaker.is_open(SOURCE.url)
