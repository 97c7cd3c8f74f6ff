"""중복 제거 단계

모든 소스의 정규화 결과를 한 번에 받아 DedupeKey(정규화 링크, 없으면 제목)가
같은 기사를 하나로 합친다.
"""

import re
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from feed_collector.models.news import Article
from feed_collector.utils.logger import get_logger
from feed_collector.utils.url_utils import normalize_url

logger = get_logger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def dedupe_key(article: Article) -> str:
    """정규화 링크, 링크가 없으면 공백을 접은 소문자 제목, 둘 다 없으면 id."""
    if article.link:
        return normalize_url(article.link)
    title = re.sub(r"\s+", " ", article.title or "").strip().lower()
    if title:
        return f"title:{title}"
    return f"id:{article.id}"


class DeduplicationEngine:
    """
    기사 중복 제거.

    1단계: DedupeKey 기준 병합 (발행 시각이 늦은 쪽 유지, 같으면 먼저 본 쪽)
    2단계: 식별자 기준 병합 (동일 규칙, 출력 id 유일성 보장)
    3단계: 이전 실행에서 이미 내보낸 식별자 제외
    """

    def deduplicate(
        self,
        articles: List[Article],
        known_ids: Optional[Iterable[str]] = None,
    ) -> List[Article]:
        """
        전 소스 기사 목록에서 중복 제거.

        Args:
            articles: 이번 실행에서 정규화된 전체 기사 (소스 순회 순서).
            known_ids: 이전 실행에서 이미 발행된 식별자 (읽기 전용).

        Returns:
            중복 제거된 기사 리스트. 살아남은 기사는 그 키의 첫 등장 위치를 차지한다.
        """
        if not articles:
            return []

        by_key = self._collapse(articles, dedupe_key)
        by_id = self._collapse(by_key, lambda a: a.id)

        known = set(known_ids or ())
        result = [a for a in by_id if a.id not in known] if known else by_id

        logger.info(
            "중복 제거 완료: %d → 키(%d) → ID(%d) → 기존 제외(%d)",
            len(articles), len(by_key), len(by_id), len(result),
        )
        return result

    def _collapse(self, articles: List[Article], key_fn: Callable[[Article], str]) -> List[Article]:
        positions: Dict[str, int] = {}
        kept: List[Article] = []
        for article in articles:
            key = key_fn(article)
            pos = positions.get(key)
            if pos is None:
                positions[key] = len(kept)
                kept.append(article)
            elif self._published(article) > self._published(kept[pos]):
                kept[pos] = article
        return kept

    @staticmethod
    def _published(article: Article) -> datetime:
        value = article.published_at
        if value is None:
            return _OLDEST
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
