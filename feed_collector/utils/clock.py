"""시각 주입용 헬퍼 (테스트에서 고정 시각을 넘길 수 있도록)"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """naive datetime은 UTC로 간주."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
