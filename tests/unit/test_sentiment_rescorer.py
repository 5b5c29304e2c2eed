"""
Unit Tests for Secondary Sentiment Providers

Reliability Level: SOVEREIGN TIER
Python 3.8 Compatible

Tests:
- Keyword counting with word boundaries
- Keyword score formula with small-sample smoothing
- Keyword re-scorer refuses to estimate without posts
- HTTP cross-check maps transport and payload failures to
  CrossCheckUnavailableError
"""

import os
import sys
from decimal import Decimal

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from data_ingestion.schemas import SocialMetrics
from services import sentiment_rescorer
from services.sentiment_rescorer import (
    KEYWORD_PROVIDER,
    HttpSentimentCrossCheck,
    KeywordSentimentRescorer,
    compute_keyword_score,
    count_keywords,
    create_cross_check,
    rescore_posts,
)
from services.veritas_models import CrossCheckUnavailableError


def metrics(posts=()):
    return SocialMetrics("lunarcrush", Decimal("50"), 10, posts=posts)


class TestKeywordScoring:

    def test_count_keywords(self):
        assert count_keywords("Bullish breakout, time to BUY") == (3, 0)
        assert count_keywords("panic selling, total crash") == (0, 3)

    def test_word_boundaries(self):
        # "shortly" must not count as "short"
        assert count_keywords("launching shortly") == (0, 0)

    @pytest.mark.parametrize("bullish,bearish,posts,expected", [
        (0, 0, 10, "50.00"),
        (3, 0, 3, "100.00"),
        (3, 0, 1, "80.00"),
        (0, 4, 10, "0.00"),
        (1, 1, 5, "50.00"),
        (3, 1, 10, "75.00"),
    ])
    def test_compute_keyword_score(self, bullish, bearish, posts, expected):
        assert compute_keyword_score(bullish, bearish, posts) == Decimal(expected)

    def test_rescore_posts_aggregates(self):
        score, bullish, bearish, count = rescore_posts(["moon", "pump it", "dump"])
        assert (bullish, bearish, count) == (2, 1, 3)
        assert score == Decimal("66.67")


class TestKeywordRescorer:

    @pytest.mark.asyncio
    async def test_estimate(self):
        estimate = await KeywordSentimentRescorer().estimate(
            "BTC", metrics(("bullish", "moon", "hodl"))
        )
        assert estimate.provider == KEYWORD_PROVIDER
        assert estimate.score == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_no_posts_unavailable(self):
        with pytest.raises(CrossCheckUnavailableError) as exc_info:
            await KeywordSentimentRescorer().estimate("BTC", metrics())
        assert exc_info.value.provider == KEYWORD_PROVIDER

    def test_factory(self):
        assert isinstance(create_cross_check(None), KeywordSentimentRescorer)
        assert isinstance(create_cross_check("http://scorer/score"), HttpSentimentCrossCheck)


class TestHttpCrossCheck:

    @pytest.fixture
    def mock_transport(self, monkeypatch):
        """Route the cross-check's AsyncClient through a MockTransport."""
        state = {"handler": None, "requests": []}
        real_client = httpx.AsyncClient

        def handler(request):
            state["requests"].append(request)
            return state["handler"](request)

        def client_factory(timeout=None):
            return real_client(transport=httpx.MockTransport(handler), timeout=timeout)

        monkeypatch.setattr(sentiment_rescorer.httpx, "AsyncClient", client_factory)
        return state

    @pytest.mark.asyncio
    async def test_successful_estimate(self, mock_transport):
        mock_transport["handler"] = lambda r: httpx.Response(
            200, json={"provider": "santiment", "score": 61.256}
        )
        estimate = await HttpSentimentCrossCheck("http://scorer/score").estimate(
            "BTC", metrics(("moon",)), "corr-1"
        )
        assert estimate.provider == "santiment"
        assert estimate.score == Decimal("61.26")
        assert mock_transport["requests"][0].headers["X-Correlation-ID"] == "corr-1"

    @pytest.mark.asyncio
    async def test_non_200_unavailable(self, mock_transport):
        mock_transport["handler"] = lambda r: httpx.Response(503, text="busy")
        with pytest.raises(CrossCheckUnavailableError) as exc_info:
            await HttpSentimentCrossCheck("http://scorer/score").estimate("BTC", metrics(("x",)))
        assert "503" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_unparseable_payload_unavailable(self, mock_transport):
        mock_transport["handler"] = lambda r: httpx.Response(200, json={"sentiment": "up"})
        with pytest.raises(CrossCheckUnavailableError):
            await HttpSentimentCrossCheck("http://scorer/score").estimate("BTC", metrics(("x",)))

    @pytest.mark.asyncio
    async def test_out_of_range_score_unavailable(self, mock_transport):
        mock_transport["handler"] = lambda r: httpx.Response(200, json={"score": 140})
        with pytest.raises(CrossCheckUnavailableError):
            await HttpSentimentCrossCheck("http://scorer/score").estimate("BTC", metrics(("x",)))

    @pytest.mark.asyncio
    async def test_connection_error_unavailable(self, mock_transport):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)
        mock_transport["handler"] = refuse
        with pytest.raises(CrossCheckUnavailableError) as exc_info:
            await HttpSentimentCrossCheck("http://scorer/score").estimate("BTC", metrics(("x",)))
        assert "request failed" in exc_info.value.reason
