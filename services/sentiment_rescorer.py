"""
============================================================================
Veritas Protocol - Secondary Sentiment Cross-Check
============================================================================

Reliability Level: L5 High
Decimal Integrity: All scores use decimal.Decimal with ROUND_HALF_EVEN
Traceability: All estimates are logged with correlation_id

SECONDARY SENTIMENT:
    The social validator compares the primary aggregator's sentiment with an
    independently derived estimate. Two providers are available:

    1. KeywordSentimentRescorer - re-scores the raw posts shipped in the
       dataset by keyword density (no I/O).
    2. HttpSentimentCrossCheck - asks an external scoring service.

    Both return a SecondarySentiment on the 0-100 scale (50 = neutral) or
    raise CrossCheckUnavailableError. This is the only I/O-bound wait inside
    the validation core.

ERROR CODES:
    - VER-020: Secondary provider unavailable

============================================================================
"""

from decimal import Decimal, ROUND_HALF_EVEN, InvalidOperation
from typing import Optional, Tuple, Iterable
import logging
import re

import httpx

from data_ingestion.schemas import SecondarySentiment, SocialMetrics
from services.veritas_models import CrossCheckUnavailableError, VeritasErrorCode

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

PRECISION_SENTIMENT = Decimal("0.01")

# Neutral point on the 0-100 scale
NEUTRAL_SCORE = Decimal("50.00")

# Posts below this count get smoothed toward neutral
MIN_POSTS_FOR_SENTIMENT = 3

# Smoothing added to the denominator for small samples
SMOOTHING_SMALL_SAMPLE = Decimal("2")

KEYWORD_PROVIDER = "keyword-rescorer"

DEFAULT_HTTP_TIMEOUT_SECONDS = 3.0


# =============================================================================
# Keyword Dictionaries
# =============================================================================

BEARISH_KEYWORDS = frozenset([
    "bearish",
    "crash",
    "dump",
    "dumping",
    "sell",
    "selling",
    "selloff",
    "sell-off",
    "short",
    "shorting",
    "plunge",
    "collapse",
    "panic",
    "fear",
    "rekt",
    "scam",
    "rug",
    "rugpull",
    "hack",
    "hacked",
    "fud",
    "capitulation",
    "bear market",
    "going to zero",
])

BULLISH_KEYWORDS = frozenset([
    "bullish",
    "moon",
    "mooning",
    "pump",
    "buy",
    "buying",
    "long",
    "hodl",
    "accumulate",
    "accumulation",
    "breakout",
    "rally",
    "surge",
    "ath",
    "all-time high",
    "adoption",
    "undervalued",
    "bull market",
    "inflow",
    "inflows",
])

_BULLISH_PATTERNS = tuple(
    re.compile(r"\b" + re.escape(k) + r"\b") for k in sorted(BULLISH_KEYWORDS)
)
_BEARISH_PATTERNS = tuple(
    re.compile(r"\b" + re.escape(k) + r"\b") for k in sorted(BEARISH_KEYWORDS)
)


# =============================================================================
# Scoring Helpers
# =============================================================================

def count_keywords(text: str) -> Tuple[int, int]:
    """
    Count bullish and bearish keyword hits in one text.

    Returns:
        Tuple of (bullish_count, bearish_count)
    """
    lowered = text.lower()
    bullish = sum(len(p.findall(lowered)) for p in _BULLISH_PATTERNS)
    bearish = sum(len(p.findall(lowered)) for p in _BEARISH_PATTERNS)
    return bullish, bearish


def compute_keyword_score(bullish: int, bearish: int, post_count: int) -> Decimal:
    """
    Map keyword counts to the 0-100 sentiment scale.

    Formula: net = (bullish - bearish) / (bullish + bearish + smoothing),
    score = 50 + 50 * net. Small samples are smoothed toward neutral.
    """
    bull = Decimal(bullish)
    bear = Decimal(bearish)
    total = bull + bear
    if total == Decimal("0"):
        return NEUTRAL_SCORE

    smoothing = SMOOTHING_SMALL_SAMPLE if post_count < MIN_POSTS_FOR_SENTIMENT else Decimal("0")
    net = (bull - bear) / (total + smoothing)
    score = NEUTRAL_SCORE + NEUTRAL_SCORE * net
    score = max(Decimal("0"), min(Decimal("100"), score))
    return score.quantize(PRECISION_SENTIMENT, rounding=ROUND_HALF_EVEN)


def rescore_posts(posts: Iterable[str]) -> Tuple[Decimal, int, int, int]:
    """Keyword score over a batch of posts: (score, bullish, bearish, post_count)."""
    bullish = 0
    bearish = 0
    count = 0
    for post in posts:
        b, s = count_keywords(post)
        bullish += b
        bearish += s
        count += 1
    return compute_keyword_score(bullish, bearish, count), bullish, bearish, count


# =============================================================================
# Providers
# =============================================================================

class KeywordSentimentRescorer:
    """
    Re-scores raw posts locally by keyword density.

    Reliability Level: L5 High
    Input Constraints: SocialMetrics with at least one post
    Side Effects: None
    """

    provider = KEYWORD_PROVIDER

    async def estimate(
        self,
        symbol: str,
        metrics: SocialMetrics,
        correlation_id: Optional[str] = None
    ) -> SecondarySentiment:
        if not metrics.posts:
            raise CrossCheckUnavailableError(self.provider, "no raw posts to re-score")

        score, bullish, bearish, count = rescore_posts(metrics.posts)

        logger.info(
            f"[VERITAS-RESCORE] Keyword estimate | "
            f"symbol={symbol} | "
            f"score={score} | "
            f"bullish={bullish} | "
            f"bearish={bearish} | "
            f"posts={count} | "
            f"correlation_id={correlation_id}"
        )
        return SecondarySentiment(provider=self.provider, score=score)


class HttpSentimentCrossCheck:
    """
    Secondary sentiment from an external scoring service.

    Request:  POST {url} {"symbol": ..., "posts": [...]}
    Response: {"provider": "...", "score": 0-100}

    Reliability Level: L5 High
    Input Constraints: Reachable scoring service
    Side Effects: HTTP POST
    """

    def __init__(self, url: str, timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS):
        self._url = url
        self._timeout = timeout_seconds
        self.provider = "http-crosscheck"

    async def estimate(
        self,
        symbol: str,
        metrics: SocialMetrics,
        correlation_id: Optional[str] = None
    ) -> SecondarySentiment:
        payload = {"symbol": symbol, "posts": list(metrics.posts)}
        headers = {"X-Correlation-ID": correlation_id} if correlation_id else {}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, json=payload, headers=headers)
        except httpx.TimeoutException:
            raise CrossCheckUnavailableError(
                self.provider, f"request timed out after {self._timeout}s"
            )
        except httpx.RequestError as e:
            raise CrossCheckUnavailableError(self.provider, f"request failed: {str(e)[:200]}")

        if response.status_code != 200:
            raise CrossCheckUnavailableError(
                self.provider, f"returned {response.status_code}: {response.text[:200]}"
            )

        try:
            data = response.json()
            provider = str(data.get("provider") or self.provider)
            score = Decimal(str(data["score"])).quantize(
                PRECISION_SENTIMENT, rounding=ROUND_HALF_EVEN
            )
            estimate = SecondarySentiment(provider=provider, score=score)
        except (ValueError, KeyError, TypeError, AttributeError, InvalidOperation) as e:
            logger.error(
                f"[{VeritasErrorCode.PROVIDER_UNAVAILABLE}] Unparseable cross-check response: "
                f"{str(e)} | symbol={symbol} | correlation_id={correlation_id}"
            )
            raise CrossCheckUnavailableError(self.provider, "unparseable response")

        logger.info(
            f"[VERITAS-RESCORE] HTTP estimate | "
            f"symbol={symbol} | "
            f"provider={estimate.provider} | "
            f"score={estimate.score} | "
            f"correlation_id={correlation_id}"
        )
        return estimate


def create_cross_check(url: Optional[str], timeout_seconds: float = DEFAULT_HTTP_TIMEOUT_SECONDS):
    """HTTP provider when a URL is configured, keyword re-scoring otherwise."""
    if url:
        return HttpSentimentCrossCheck(url, timeout_seconds)
    return KeywordSentimentRescorer()
