"""정규화 단계: RawRecord → Article

피드마다 제각각인 엔트리 필드를 하나의 Article 형태로 맞춘다.
예외를 던지지 않으며, 누락/파싱 불가 필드는 기본값으로 대체한다.
"""

import hashlib
import html as html_module
import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from dateutil import parser as dateutil_parser

from feed_collector.models.news import Article
from feed_collector.models.raw_news import RawRecord
from feed_collector.utils.clock import Clock, ensure_utc, utc_now
from feed_collector.utils.logger import get_logger
from feed_collector.utils.url_utils import normalize_url

logger = get_logger(__name__)

UNKNOWN_SOURCE = "Unknown"

_IMG_SRC_RE = re.compile(r'<img[^>]+src=["\']([^"\']+)["\']', re.IGNORECASE)


def make_article_id(guid: str, link: str, source: str, title: str) -> str:
    """결정적 식별자: guid → 정규화 링크 → 소스+제목 순으로 MD5."""
    if guid:
        basis = guid.strip()
    elif link:
        basis = normalize_url(link)
    else:
        basis = f"{source}|{title}"
    return hashlib.md5(basis.encode("utf-8")).hexdigest()


class ArticleNormalizer:
    """
    RawRecord → Article 변환.
    HTML 정제, 날짜 파싱, 식별자 부여.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    def normalize(self, raw: RawRecord) -> Article:
        """단일 RawRecord를 Article로 변환. 실패하지 않는다."""
        try:
            return self._normalize(raw)
        except Exception as e:
            logger.warning("정규화 중 오류, 최소 필드로 대체: %s - %s", raw.source_name, e)
            return self._minimal(raw)

    def normalize_batch(self, records: List[RawRecord]) -> List[Article]:
        """배치 정규화."""
        results = [self.normalize(raw) for raw in records]
        logger.debug("정규화 완료: %d건", len(results))
        return results

    def _normalize(self, raw: RawRecord) -> Article:
        data = raw.payload or {}
        source = raw.source_name or UNKNOWN_SOURCE

        title = self._single_line(self._clean_html(self._field(data, "title")))
        raw_description = (
            self._field(data, "description")
            or self._field(data, "summary")
            or self._field(data, "content")
        )
        description = self._clean_html(raw_description)
        link = self._field(data, "link").strip()
        guid = self._field(data, "guid") or self._field(data, "id")

        fetched_at = ensure_utc(raw.fetched_at) if raw.fetched_at else self._clock()
        published_at = self._parse_datetime(
            data.get("pubDate") or data.get("published") or data.get("updated")
        ) or fetched_at

        author = self._single_line(self._clean_html(self._field(data, "author") or self._field(data, "creator")))
        image_url = self._field(data, "image").strip() or self._first_image(raw_description)

        return Article(
            id=make_article_id(guid, link, source, title),
            title=title,
            description=description,
            link=link,
            published_at=published_at,
            fetched_at=fetched_at,
            source=source,
            source_url=raw.source_url,
            author=author or None,
            regions=[raw.region] if raw.region else [],
            image_url=image_url or None,
        )

    def _minimal(self, raw: RawRecord) -> Article:
        data = raw.payload if isinstance(raw.payload, dict) else {}
        source = raw.source_name or UNKNOWN_SOURCE
        title = str(data.get("title") or "")
        link = str(data.get("link") or "")
        now = self._clock()
        return Article(
            id=make_article_id("", link, source, title),
            title=title,
            link=link,
            published_at=now,
            fetched_at=now,
            source=source,
            source_url=raw.source_url,
        )

    @staticmethod
    def _field(data: Dict[str, Any], key: str) -> str:
        value = data.get(key)
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)

    def _clean_html(self, html: str) -> str:
        """HTML 태그 제거 및 정제."""
        if not html:
            return ""
        text = re.sub(r"<script[^>]*>.*?</script>", "", html, flags=re.DOTALL | re.IGNORECASE)
        text = re.sub(r"<style[^>]*>.*?</style>", "", text, flags=re.DOTALL | re.IGNORECASE)
        text = re.sub(r"<br\s*/?>|</p>", "\n", text, flags=re.IGNORECASE)
        text = re.sub(r"<[^>]+>", "", text)
        text = html_module.unescape(text).replace("\xa0", " ")
        lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.split("\n")]
        return "\n".join(line for line in lines if line)

    @staticmethod
    def _single_line(text: str) -> str:
        return re.sub(r"\s+", " ", text).strip()

    def _parse_datetime(self, date_str: Any) -> Optional[datetime]:
        """다양한 날짜 형식 파싱. 타임존 없는 값은 UTC로 간주."""
        if not date_str:
            return None
        if isinstance(date_str, datetime):
            return ensure_utc(date_str)
        try:
            return ensure_utc(dateutil_parser.parse(str(date_str)))
        except (ValueError, TypeError, OverflowError):
            logger.debug("날짜 파싱 실패: %s", date_str)
            return None

    @staticmethod
    def _first_image(html: str) -> str:
        if not html:
            return ""
        match = _IMG_SRC_RE.search(html)
        return match.group(1) if match else ""
