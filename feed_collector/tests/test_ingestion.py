"""RSSConnector 테스트 (HTTP 요청 + 피드 파싱)"""

import asyncio
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from feed_collector.ingestion.base_connector import HttpResponse
from feed_collector.ingestion.rss_connector import RSSConnector
from feed_collector.models.errors import ErrorKind, FetchError


SAMPLE_ATOM_XML = """<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Test Atom Feed</title>
  <entry>
    <title>Atom entry title</title>
    <id>tag:example.com,2026:1</id>
    <link rel="self" href="https://atom.example.com/self/1"/>
    <link rel="alternate" href="https://atom.example.com/1"/>
    <summary>Atom summary</summary>
    <updated>2026-02-05T10:00:00Z</updated>
    <author><name>Writer</name></author>
    <category term="Industrial"/>
  </entry>
</feed>"""

SAMPLE_RDF_XML = """<?xml version="1.0"?>
<rdf:RDF xmlns:rdf="http://www.w3.org/1999/02/22-rdf-syntax-ns#"
         xmlns="http://purl.org/rss/1.0/"
         xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel rdf:about="https://rdf.example.com/"><title>RDF</title></channel>
  <item rdf:about="https://rdf.example.com/a">
    <title>RDF item</title>
    <link>https://rdf.example.com/a</link>
    <description>RDF description</description>
    <dc:date>2026-02-05T08:00:00Z</dc:date>
    <dc:creator>Reporter</dc:creator>
  </item>
</rdf:RDF>"""

MEDIA_RSS_XML = """<?xml version="1.0"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/"
     xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <item>
      <title>With media</title>
      <link>https://example.com/m</link>
      <content:encoded><![CDATA[<p>Full body</p>]]></content:encoded>
      <media:content url="https://img.example.com/a.jpg" medium="image"/>
      <category>Industrial</category>
      <category>Leasing</category>
    </item>
    <item>
      <title>With enclosure</title>
      <enclosure url="https://img.example.com/b.png" type="image/png" length="1"/>
    </item>
  </channel>
</rss>"""


class TestRSSConnectorParsing:
    """피드 XML 파싱 테스트 (네트워크 불필요)."""

    def setup_method(self):
        self.connector = RSSConnector()

    def test_parse_rss20(self, sample_rss):
        entries = self.connector.parse_feed(sample_rss)
        assert len(entries) == 2
        first = entries[0]
        assert first["title"] == "Prologis acquires Edison warehouse"
        assert first["link"] == "https://example.com/news/1"
        assert first["guid"] == "https://example.com/?p=1"
        assert first["author"] == "Jane Doe"
        assert first["pubDate"] == "Thu, 05 Feb 2026 10:00:00 +0000"
        assert "<p>" in first["description"]

    def test_parse_atom(self):
        entries = self.connector.parse_feed(SAMPLE_ATOM_XML)
        assert len(entries) == 1
        entry = entries[0]
        assert entry["link"] == "https://atom.example.com/1"
        assert entry["guid"] == "tag:example.com,2026:1"
        assert entry["pubDate"] == "2026-02-05T10:00:00Z"
        assert entry["author"] == "Writer"
        assert entry["categories"] == ["Industrial"]

    def test_parse_rdf(self):
        entries = self.connector.parse_feed(SAMPLE_RDF_XML)
        assert len(entries) == 1
        assert entries[0]["title"] == "RDF item"
        assert entries[0]["guid"] == "https://rdf.example.com/a"
        assert entries[0]["pubDate"] == "2026-02-05T08:00:00Z"
        assert entries[0]["author"] == "Reporter"

    def test_media_and_content_encoded(self):
        entries = self.connector.parse_feed(MEDIA_RSS_XML)
        assert entries[0]["image"] == "https://img.example.com/a.jpg"
        assert entries[0]["description"] == "<p>Full body</p>"
        assert entries[0]["categories"] == ["Industrial", "Leasing"]
        assert entries[1]["image"] == "https://img.example.com/b.png"
        assert entries[1]["link"] == ""

    def test_parse_empty_feed(self):
        assert self.connector.parse_feed('<?xml version="1.0"?><rss><channel></channel></rss>') == []

    def test_leading_whitespace_and_bom(self, sample_rss):
        assert len(self.connector.parse_feed("\ufeff\n  " + sample_rss)) == 2

    @pytest.mark.parametrize("payload", ["<not valid xml", "", "<html><body>hi</body></html>"])
    def test_parse_failures(self, payload):
        with pytest.raises(FetchError) as exc_info:
            self.connector.parse_feed(payload)
        assert exc_info.value.kind == ErrorKind.PARSE_FAILED
        assert exc_info.value.counts_as_failure


class TestRSSConnectorHttp:
    """HTTP 요청 (requests 패치)."""

    def setup_method(self):
        self.connector = RSSConnector(user_agent="TestBot/1.0")

    def test_http_get_sends_headers(self):
        response = MagicMock(status_code=200, content=b"<rss/>", url="https://a.com/feed")
        with patch("feed_collector.ingestion.rss_connector.requests.get", return_value=response) as mock_get:
            result = asyncio.run(self.connector.retrieve("https://a.com/feed", timeout=5))

        assert result == HttpResponse(status=200, body="<rss/>", url="https://a.com/feed")
        assert result.ok
        headers = mock_get.call_args.kwargs["headers"]
        assert headers["User-Agent"] == "TestBot/1.0"
        assert "application/rss+xml" in headers["Accept"]
        assert mock_get.call_args.kwargs["timeout"] == 5

    def test_non_2xx_is_returned_not_raised(self):
        response = MagicMock(status_code=403, content=b"denied", url="https://a.com/feed")
        with patch("feed_collector.ingestion.rss_connector.requests.get", return_value=response):
            result = asyncio.run(self.connector.retrieve("https://a.com/feed", timeout=5))
        assert result.status == 403
        assert not result.ok

    def test_network_error_is_fetch_failed(self):
        with patch(
            "feed_collector.ingestion.rss_connector.requests.get",
            side_effect=requests.ConnectionError("refused"),
        ):
            with pytest.raises(FetchError) as exc_info:
                asyncio.run(self.connector.retrieve("https://a.com/feed", timeout=5))
        assert exc_info.value.kind == ErrorKind.FETCH_FAILED

    def test_timeout_is_fetch_failed(self):
        def slow(url, timeout):
            time.sleep(0.3)
            return HttpResponse(200, "<rss/>")

        with patch.object(self.connector, "_http_get", side_effect=slow):
            with pytest.raises(FetchError) as exc_info:
                asyncio.run(self.connector.retrieve("https://a.com/feed", timeout=0.05))
        assert exc_info.value.kind == ErrorKind.FETCH_FAILED
        assert "Timeout" in exc_info.value.message
