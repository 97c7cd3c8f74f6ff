"""URL/도메인 유틸리티"""

import re
from typing import Iterable
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


def get_domain(url: str) -> str:
    """URL의 호스트명 (www. 제거, 소문자). 파싱 불가 시 빈 문자열."""
    if not url:
        return ""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return ""
    return re.sub(r"^www\.", "", host.lower())


def domain_matches(domain: str, allowed: Iterable[str]) -> bool:
    """도메인이 허용 목록의 도메인과 같거나 그 서브도메인인지."""
    if not domain:
        return False
    for entry in allowed:
        entry = entry.lower().lstrip(".")
        if entry.startswith("www."):
            entry = entry[4:]
        if domain == entry or domain.endswith("." + entry):
            return True
    return False


# 추적용 파라미터 (utm_* 접두어 외)
TRACKING_PARAMS = frozenset({
    "fbclid", "gclid", "yclid", "msclkid", "igshid",
    "mc_cid", "mc_eid", "ref", "ref_src",
})


def normalize_url(url: str) -> str:
    """
    URL 정규화.

    프래그먼트와 추적 파라미터(utm_*, fbclid 등)를 제거하고 scheme/host만 소문자로 바꾼다.
    기사를 구분하는 쿼리(?id=101)와 경로 대소문자는 유지한다.
    """
    if not url:
        return ""
    url = url.strip()
    try:
        parsed = urlparse(url)
    except ValueError:
        return url.rstrip("/")
    if not parsed.scheme or not parsed.netloc:
        return url.rstrip("/")

    params = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not key.lower().startswith("utm_") and key.lower() not in TRACKING_PARAMS
    ]
    path = parsed.path.rstrip("/")
    return urlunparse((
        parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, urlencode(params), "",
    ))


def get_origin(url: str) -> str:
    """scheme://host[:port] 부분."""
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"
