"""RSS/Atom 피드 수집 커넥터"""

import asyncio
from typing import Any, Dict, List, Optional
from xml.etree import ElementTree

import requests

from feed_collector.ingestion.base_connector import BaseConnector, HttpResponse
from feed_collector.models.errors import ErrorKind, FetchError
from feed_collector.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/122.0.0.0 Safari/537.36"
)
DEFAULT_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"

NS = {
    "atom": "http://www.w3.org/2005/Atom",
    "dc": "http://purl.org/dc/elements/1.1/",
    "content": "http://purl.org/rss/1.0/modules/content/",
    "media": "http://search.yahoo.com/mrss/",
    "rdf": "http://www.w3.org/1999/02/22-rdf-syntax-ns#",
    "rss1": "http://purl.org/rss/1.0/",
}

_FEED_ROOTS = ("rss", "feed", "RDF")


class RSSConnector(BaseConnector):
    """
    RSS 2.0 / Atom / RSS 1.0(RDF) 피드 커넥터.

    사용법:
        connector = RSSConnector(user_agent=config.get("fetch.user_agent"))
        response = await connector.retrieve(url, timeout=20)
        entries = connector.parse_feed(response.body)
    """

    def __init__(self, user_agent: Optional[str] = None, accept: Optional[str] = None) -> None:
        self.user_agent = user_agent or DEFAULT_USER_AGENT
        self.accept = accept or DEFAULT_ACCEPT

    async def retrieve(self, url: str, timeout: float) -> HttpResponse:
        """HTTP GET (워커 스레드). 타임아웃/네트워크 오류는 FetchFailed."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._http_get, url, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise FetchError(ErrorKind.FETCH_FAILED, f"Timeout after {timeout:.0f}s")

    def _http_get(self, url: str, timeout: float) -> HttpResponse:
        headers = {"User-Agent": self.user_agent, "Accept": self.accept}
        try:
            resp = requests.get(url, headers=headers, timeout=timeout)
        except requests.RequestException as e:
            raise FetchError(ErrorKind.FETCH_FAILED, f"Request failed: {e}")
        body = resp.content.decode("utf-8", errors="replace") if resp.content else ""
        return HttpResponse(status=resp.status_code, body=body, url=resp.url or url)

    def parse_feed(self, xml_text: str) -> List[Dict[str, Any]]:
        """RSS/Atom/RDF XML 파싱."""
        text = (xml_text or "").lstrip("\ufeff \t\r\n")
        if not text:
            raise FetchError(ErrorKind.PARSE_FAILED, "Empty feed document")
        try:
            root = ElementTree.fromstring(text)
        except ElementTree.ParseError as e:
            raise FetchError(ErrorKind.PARSE_FAILED, f"Invalid XML: {e}")

        root_name = self._local_name(root.tag)
        if root_name not in _FEED_ROOTS:
            raise FetchError(ErrorKind.PARSE_FAILED, f"Not a feed document (root <{root_name}>)")

        if root_name == "feed":
            entries = [self._atom_entry(e) for e in root.findall("atom:entry", NS)]
        else:
            # RSS 2.0는 channel/item, RSS 1.0은 루트 바로 아래 item
            items = list(root.iter("item")) or list(root.iter(f"{{{NS['rss1']}}}item"))
            entries = [self._rss_item(item) for item in items]

        logger.debug("피드 파싱: <%s> 엔트리 %d건", root_name, len(entries))
        return entries

    def _rss_item(self, item: ElementTree.Element) -> Dict[str, Any]:
        guid = self._text(item, "guid") or item.get(f"{{{NS['rdf']}}}about", "")
        return {
            "title": self._text(item, "title") or self._text(item, "rss1:title"),
            "link": self._text(item, "link") or self._text(item, "rss1:link"),
            "guid": guid,
            "description": (
                self._text(item, "description")
                or self._text(item, "rss1:description")
                or self._text(item, "content:encoded")
            ),
            "pubDate": self._text(item, "pubDate") or self._text(item, "dc:date"),
            "author": self._text(item, "author") or self._text(item, "dc:creator"),
            "categories": [
                el.text.strip() for el in item.findall("category") if el.text and el.text.strip()
            ],
            "image": self._image(item),
        }

    def _atom_entry(self, entry: ElementTree.Element) -> Dict[str, Any]:
        return {
            "title": self._text(entry, "atom:title"),
            "link": self._atom_link(entry),
            "guid": self._text(entry, "atom:id"),
            "description": self._text(entry, "atom:summary") or self._text(entry, "atom:content"),
            "pubDate": self._text(entry, "atom:published") or self._text(entry, "atom:updated"),
            "author": self._text(entry, "atom:author/atom:name"),
            "categories": [
                el.get("term", "") for el in entry.findall("atom:category", NS) if el.get("term")
            ],
            "image": self._image(entry),
        }

    @staticmethod
    def _atom_link(entry: ElementTree.Element) -> str:
        fallback = ""
        for link in entry.findall("atom:link", NS):
            href = link.get("href", "").strip()
            if not href:
                continue
            if link.get("rel", "alternate") == "alternate":
                return href
            fallback = fallback or href
        return fallback

    @staticmethod
    def _image(element: ElementTree.Element) -> str:
        """enclosure → media:content → media:thumbnail 순."""
        for enclosure in element.findall("enclosure"):
            if enclosure.get("type", "").startswith("image/") and enclosure.get("url"):
                return enclosure.get("url")
        for media in element.findall("media:content", NS):
            if media.get("url") and (
                media.get("medium") == "image" or media.get("type", "").startswith("image/")
            ):
                return media.get("url")
        thumb = element.find("media:thumbnail", NS)
        if thumb is not None and thumb.get("url"):
            return thumb.get("url")
        return ""

    @staticmethod
    def _text(element: ElementTree.Element, tag: str) -> str:
        el = element.find(tag, NS)
        return el.text.strip() if el is not None and el.text else ""

    @staticmethod
    def _local_name(tag: str) -> str:
        return tag.rsplit("}", 1)[-1]
