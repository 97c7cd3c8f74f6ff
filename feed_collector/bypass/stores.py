"""우회 서브시스템 영속 상태: 피드 캐시, 일일 레이트 리밋, 도메인별 쿠키

세 저장소 모두 KeyValueStore 위에서 동작하며, 파일 저장소를 쓰면
data_dir 아래 JSON 문서 하나씩으로 남는다.
"""

from datetime import timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from feed_collector.utils.clock import Clock, utc_now
from feed_collector.utils.kv_store import KeyValueStore
from feed_collector.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CACHE_TTL = timedelta(hours=12)
DEFAULT_MAX_RUNS_PER_DAY = 10

CACHE_FILENAME = "feed-cache.json"
COOKIES_FILENAME = "cookies.json"
RATE_LIMIT_FILENAME = "rate-limits.json"


class BypassCache:
    """
    URL별 우회 결과 캐시.

    엔트리: {"content", "fetched_at", "expires_at"} (epoch 초).
    만료된 엔트리는 절대 반환하지 않으며, 쓰기 시점에 일괄 정리한다.
    """

    def __init__(
        self,
        store: KeyValueStore,
        ttl: timedelta = DEFAULT_CACHE_TTL,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def get(self, url: str) -> Optional[str]:
        """만료되지 않은 캐시 콘텐츠. 없으면 None."""
        entry = self._store.get(url)
        if not isinstance(entry, dict):
            return None
        if entry.get("expires_at", 0) > self._clock().timestamp():
            logger.debug("우회 캐시 히트: %s", url)
            return entry.get("content")
        return None

    def put(self, url: str, content: str) -> None:
        """캐시 저장 (만료 엔트리 정리 포함)."""
        now = self._clock().timestamp()
        data = self._store.load_all()

        expired = [
            key for key, entry in data.items()
            if not isinstance(entry, dict) or entry.get("expires_at", 0) < now
        ]
        for key in expired:
            del data[key]
        if expired:
            logger.debug("만료된 우회 캐시 %d건 정리", len(expired))

        data[url] = {
            "content": content,
            "fetched_at": now,
            "expires_at": now + self._ttl.total_seconds(),
        }
        self._store.save_all(data)

    def size(self) -> int:
        return len(self._store)


class RateLimiter:
    """
    도메인별 일일 우회 세션 횟수 제한.

    기록: {"date": "YYYY-MM-DD", "count": n}. 저장된 날짜가 오늘(UTC)과 다르면
    암묵적으로 0부터 다시 센다.
    """

    def __init__(
        self,
        store: KeyValueStore,
        max_per_day: int = DEFAULT_MAX_RUNS_PER_DAY,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._max_per_day = max_per_day
        self._clock = clock

    @property
    def limit(self) -> int:
        return self._max_per_day

    def _today(self) -> str:
        return self._clock().astimezone(timezone.utc).strftime("%Y-%m-%d")

    def used(self, domain: str) -> int:
        """오늘 사용한 횟수."""
        record = self._store.get(domain)
        if not isinstance(record, dict) or record.get("date") != self._today():
            return 0
        return int(record.get("count", 0))

    def status(self, domain: str) -> Tuple[int, int]:
        """(남은 횟수, 일일 한도)."""
        return max(0, self._max_per_day - self.used(domain)), self._max_per_day

    def allow(self, domain: str) -> bool:
        return self.used(domain) < self._max_per_day

    def increment(self, domain: str) -> int:
        """사용 횟수 1 증가 후 오늘 누적 횟수 반환."""
        today = self._today()
        data = self._store.load_all()
        record = data.get(domain)
        if not isinstance(record, dict) or record.get("date") != today:
            record = {"date": today, "count": 0}
        record["count"] = int(record.get("count", 0)) + 1
        data[domain] = record
        self._store.save_all(data)
        return record["count"]

    def snapshot(self, domains: List[str]) -> Dict[str, Dict[str, int]]:
        """도메인별 {"used", "remaining"}."""
        result = {}
        for domain in domains:
            used = self.used(domain)
            result[domain] = {"used": used, "remaining": max(0, self._max_per_day - used)}
        return result


class CookieStore:
    """도메인별 쿠키 보관. 풀린 챌린지를 다음 세션에서 재사용하기 위함."""

    def __init__(self, store: KeyValueStore, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    def load(self, domain: str) -> List[Dict[str, Any]]:
        record = self._store.get(domain)
        if not isinstance(record, dict):
            return []
        cookies = record.get("cookies", [])
        return cookies if isinstance(cookies, list) else []

    def save(self, domain: str, cookies: List[Dict[str, Any]]) -> None:
        self._store.set(domain, {
            "cookies": cookies,
            "saved_at": self._clock().timestamp(),
        })

    def domains(self) -> List[str]:
        return self._store.keys()


def clearance_cookies(cookies: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Cloudflare 계열 쿠키 (cf_clearance, __cf_bm, ...)."""
    return [
        c for c in cookies
        if "cf_" in str(c.get("name", "")) or "__cf" in str(c.get("name", ""))
    ]
