"""소스별 서킷 브레이커

연속 실패 횟수가 임계값(기본 3회)에 도달하면 쿨다운(기본 24시간) 동안
해당 소스 수집을 건너뛴다. half-open 단계는 없다: 쿨다운이 끝난 뒤의 첫 시도는
일반 시도이며, 실패하면 실패 횟수가 여전히 임계값 이상이므로 즉시 다시 열린다.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from feed_collector.utils.clock import Clock, utc_now
from feed_collector.utils.kv_store import InMemoryStore, KeyValueStore
from feed_collector.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_FAILURES = 3
DEFAULT_COOLDOWN = timedelta(hours=24)


@dataclass
class CircuitBreakerState:
    """소스 URL 하나의 브레이커 상태."""

    failure_count: int = 0
    blocked_until: Optional[float] = None  # epoch 초
    last_error: Optional[str] = None

    def is_blocked(self, now: datetime) -> bool:
        return self.blocked_until is not None and self.blocked_until > now.timestamp()

    @property
    def blocked_until_dt(self) -> Optional[datetime]:
        if self.blocked_until is None:
            return None
        return datetime.fromtimestamp(self.blocked_until, tz=timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "failure_count": self.failure_count,
            "blocked_until": self.blocked_until,
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "CircuitBreakerState":
        if not isinstance(data, dict):
            return cls()
        blocked_until = data.get("blocked_until")
        return cls(
            failure_count=int(data.get("failure_count", 0) or 0),
            blocked_until=float(blocked_until) if blocked_until is not None else None,
            last_error=data.get("last_error"),
        )


class CircuitBreaker:
    """
    소스 URL을 키로 하는 서킷 브레이커 테이블.

    사용법:
        breaker = CircuitBreaker()
        if breaker.is_open(url):
            ...  # 네트워크 요청 없이 CircuitOpen
        breaker.record_failure(url, "HTTP 500")
        breaker.record_success(url)
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        max_failures: int = DEFAULT_MAX_FAILURES,
        cooldown: timedelta = DEFAULT_COOLDOWN,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store if store is not None else InMemoryStore()
        self._max_failures = max_failures
        self._cooldown = cooldown
        self._clock = clock

    @property
    def max_failures(self) -> int:
        return self._max_failures

    def get_state(self, url: str) -> CircuitBreakerState:
        return CircuitBreakerState.from_dict(self._store.get(url))

    def is_open(self, url: str) -> bool:
        """쿨다운 중이면 True."""
        return self.get_state(url).is_blocked(self._clock())

    def record_success(self, url: str) -> None:
        """성공: 실패 횟수 0, 차단 해제."""
        state = self.get_state(url)
        if state.failure_count or state.blocked_until is not None:
            logger.info("서킷 브레이커 리셋: %s (이전 실패 %d회)", url, state.failure_count)
        self._store.set(url, CircuitBreakerState().to_dict())

    def record_failure(self, url: str, error: str) -> CircuitBreakerState:
        """실패 누적. 임계값 도달 시 쿨다운 설정."""
        state = self.get_state(url)
        state.failure_count += 1
        state.last_error = error

        if state.failure_count >= self._max_failures:
            until = self._clock() + self._cooldown
            state.blocked_until = until.timestamp()
            logger.warning(
                "소스 차단: %s (%d회 연속 실패, %s까지)",
                url, state.failure_count, until.isoformat(),
            )
        else:
            logger.debug("소스 실패 기록: %s (연속 %d회)", url, state.failure_count)

        self._store.set(url, state.to_dict())
        return state

    def reset(self, url: str) -> None:
        self._store.delete(url)

    def blocked_sources(self) -> List[Dict[str, Any]]:
        """현재 차단된 소스 목록 (url, reason, blocked_until)."""
        now = self._clock()
        blocked = []
        for url, raw_state in self._store.load_all().items():
            state = CircuitBreakerState.from_dict(raw_state)
            if state.is_blocked(now):
                blocked.append({
                    "url": url,
                    "reason": state.last_error or "Unknown",
                    "failure_count": state.failure_count,
                    "blocked_until": state.blocked_until_dt.isoformat(),
                })
        return blocked
