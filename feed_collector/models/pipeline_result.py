"""파이프라인 실행 결과 모델"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from feed_collector.models.errors import ErrorKind
from feed_collector.models.news import Article

STATUS_OK = "ok"
STATUS_ERROR = "error"


@dataclass
class SourceResult:
    """소스별 수집 메타데이터."""

    source_name: str = ""
    source_url: str = ""
    status: str = STATUS_OK
    raw_count: int = 0
    kept: int = 0
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    duration_ms: int = 0
    via_bypass: bool = False

    @property
    def filtered_out(self) -> int:
        return max(0, self.raw_count - self.kept)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feed": self.source_name,
            "url": self.source_url,
            "status": self.status,
            "fetched_raw": self.raw_count,
            "kept": self.kept,
            "filtered_out": self.filtered_out,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "duration_ms": self.duration_ms,
        }


@dataclass
class PipelineSummary:
    """실행 전체 집계."""

    timestamp: Optional[datetime] = None
    total_sources: int = 0
    succeeded: int = 0
    failed: int = 0
    total_raw: int = 0
    total_kept: int = 0
    duration_ms: int = 0
    recent_articles: List[Article] = field(default_factory=list)

    @property
    def last_article(self) -> Optional[Article]:
        return self.recent_articles[0] if self.recent_articles else None


@dataclass
class PipelineResult:
    """렌더러에 넘기는 최종 결과: 기사 목록 + 소스별 메타데이터."""

    articles: List[Article] = field(default_factory=list)
    sources: List[SourceResult] = field(default_factory=list)
    summary: PipelineSummary = field(default_factory=PipelineSummary)
    blocked_sources: List[Dict[str, Any]] = field(default_factory=list)

    def get_source(self, url: str) -> Optional[SourceResult]:
        for result in self.sources:
            if result.source_url == url:
                return result
        return None
