"""안티봇 챌린지 페이지 판별

상태 없는 판정 함수만 둔다. Fetch 단계와 우회 세션이 공통으로 사용.
"""

import re
from typing import Optional

# Cloudflare 계열 챌린지 지표
CHALLENGE_INDICATORS = [
    "just a moment",
    "checking your browser",
    "cf-browser-verification",
    "challenge-platform",
    "cloudflare",
    "cf_clearance",
    "turnstile",
    "ray id",
]

# 챌린지 HTML 본문에 나타나는 문구
CHALLENGE_HTML_MARKERS = [
    "just a moment",
    "checking your browser",
    "challenge",
]

FEED_MARKERS = ("<?xml", "<rss", "<feed")

_XML_FRAGMENT = re.compile(r"<\?xml[\s\S]*$")
_RSS_FRAGMENT = re.compile(r"<rss[\s\S]*</rss>", re.IGNORECASE)
_FEED_FRAGMENT = re.compile(r"<feed[\s\S]*</feed>", re.IGNORECASE)
_RDF_FRAGMENT = re.compile(r"<rdf:RDF[\s\S]*</rdf:RDF>")


def is_challenge(body: Optional[str], status: Optional[int] = None) -> bool:
    """
    응답이 안티봇 챌린지 페이지인지 판별.

    지표 키워드가 있어야 하고, 추가로 챌린지 형태의 HTML이거나 HTTP 403이어야 한다.
    CDN이 서빙한 일반 페이지(푸터에 "cloudflare"만 있는 경우)는 챌린지가 아니다.

    Args:
        body: 응답 본문.
        status: HTTP 상태 코드 (없으면 본문만으로 판단).
    """
    if not body:
        return False

    lower = body.lower()
    has_indicator = any(indicator in lower for indicator in CHALLENGE_INDICATORS)
    if not has_indicator:
        return False

    is_challenge_html = "<!doctype" in lower and any(
        marker in lower for marker in CHALLENGE_HTML_MARKERS
    )
    return is_challenge_html or status == 403


def looks_like_feed(content: Optional[str]) -> bool:
    """XML/피드 마커가 있는지."""
    if not content:
        return False
    return any(marker in content for marker in FEED_MARKERS) or "<rdf:RDF" in content


def extract_feed_fragment(content: str) -> str:
    """
    렌더링된 페이지에서 XML/피드 조각 추출.

    우선순위: <?xml ...(끝까지) → <rss>...</rss> → <feed>...</feed> → RDF → 원문.
    """
    for pattern in (_XML_FRAGMENT, _RSS_FRAGMENT, _FEED_FRAGMENT, _RDF_FRAGMENT):
        match = pattern.search(content)
        if match:
            return match.group(0)
    return content
