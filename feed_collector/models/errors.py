"""수집 오류 종류"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """소스 수집/우회 실패 유형."""

    CIRCUIT_OPEN = "CircuitOpen"
    FETCH_FAILED = "FetchFailed"
    PARSE_FAILED = "ParseFailed"

    # 우회 서브시스템 전용
    NOT_ALLOWLISTED = "NotAllowlisted"
    NOT_A_CHALLENGE = "NotAChallenge"
    RATE_LIMITED = "RateLimited"
    CHALLENGE_UNSOLVED = "ChallengeUnsolved"
    NOT_A_FEED = "NotAFeed"


class FetchError(Exception):
    """Fetch 단계에서 발생하는 오류. 소스 경계를 넘기 전에 메타데이터로 변환된다."""

    def __init__(self, kind: ErrorKind, message: str = "", counts_as_failure: Optional[bool] = None) -> None:
        super().__init__(message or kind.value)
        self.kind = kind
        self.message = message or kind.value
        # None이면 kind에 따라 결정 (CircuitOpen은 실패 누적 대상 아님)
        if counts_as_failure is None:
            counts_as_failure = kind in (ErrorKind.FETCH_FAILED, ErrorKind.PARSE_FAILED)
        self.counts_as_failure = counts_as_failure

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"
