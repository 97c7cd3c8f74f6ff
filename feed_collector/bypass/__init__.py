from feed_collector.bypass.browser_session import (
    BrowserPage,
    BrowserSession,
    SeleniumBrowserSession,
)
from feed_collector.bypass.challenge_detector import (
    extract_feed_fragment,
    is_challenge,
    looks_like_feed,
)
from feed_collector.bypass.session_runner import (
    BypassResult,
    BypassSessionRunner,
    OriginalResponse,
)
from feed_collector.bypass.stores import BypassCache, CookieStore, RateLimiter

__all__ = [
    "BrowserPage",
    "BrowserSession",
    "SeleniumBrowserSession",
    "extract_feed_fragment",
    "is_challenge",
    "looks_like_feed",
    "BypassResult",
    "BypassSessionRunner",
    "OriginalResponse",
    "BypassCache",
    "CookieStore",
    "RateLimiter",
]
