from feed_collector.ingestion.base_connector import BaseConnector, HttpResponse
from feed_collector.ingestion.circuit_breaker import CircuitBreaker, CircuitBreakerState
from feed_collector.ingestion.fetch_stage import FetchStage
from feed_collector.ingestion.rss_connector import RSSConnector

__all__ = [
    "BaseConnector",
    "HttpResponse",
    "CircuitBreaker",
    "CircuitBreakerState",
    "FetchStage",
    "RSSConnector",
]
