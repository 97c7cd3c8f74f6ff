"""원본 피드 레코드 데이터 모델"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class RawRecord:
    """Fetch 단계 출력: 피드 엔트리 한 건의 원본 필드.

    정규화 단계에서 소비되고 버려진다.
    """

    source_name: str = ""
    source_url: str = ""
    region: str = ""

    # 피드 엔트리 원본 필드 (title, link, guid, description, pubDate, author, ...)
    payload: Dict[str, Any] = field(default_factory=dict)

    fetched_at: Optional[datetime] = None

    # 우회 경로로 받은 콘텐츠인지
    via_bypass: bool = False
