"""수집 커넥터 베이스 클래스"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass
class HttpResponse:
    """직접 요청 응답. 챌린지 판정과 파싱 모두 이 값을 사용한다."""

    status: int
    body: str
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class BaseConnector(ABC):
    """피드 커넥터의 추상 베이스: 원문 가져오기와 엔트리 파싱."""

    @abstractmethod
    async def retrieve(self, url: str, timeout: float) -> HttpResponse:
        """URL 원문 요청. 네트워크 오류/타임아웃은 FetchError(FetchFailed)."""
        ...

    @abstractmethod
    def parse_feed(self, xml_text: str) -> List[Dict[str, Any]]:
        """피드 문서를 엔트리 dict 목록으로. 파싱 불가 시 FetchError(ParseFailed)."""
        ...
