"""
============================================================================
Veritas Protocol v1.0.0
Validation Schemas - Pydantic Models for the Validation Endpoint
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)
Input Constraints: camelCase JSON as produced by the upstream collector
Side Effects: None (pure validation)

SOVEREIGN MANDATE:
- All prices, volumes and scores parsed as decimal.Decimal
- Structural errors are rejected here (422) before the orchestrator runs
- Logical contradictions (e.g. zero mentions with a sentiment split) are
  NOT rejected here; detecting them is the validation layer's job

============================================================================
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Tuple

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

from data_ingestion.schemas import (
    ChainTransaction,
    DomainDataset,
    MarketQuote,
    NewsItem,
    OnChainFlowSummary,
    SecondarySentiment,
    SentimentDistribution,
    SocialMetrics,
)
from services.validation_orchestrator import ValidationOptions
from services.veritas_models import Domain


# ============================================================================
# CONSTANTS
# ============================================================================

# Upper bound for a caller-supplied per-domain timeout
MAX_TIMEOUT_MS = 60000

# Provider names used when the collector omits them
DEFAULT_SOCIAL_PROVIDER = "social-aggregate"
DEFAULT_ONCHAIN_PROVIDER = "onchain-aggregate"

_CAMEL = ConfigDict(populate_by_name=True, extra="ignore")


# ============================================================================
# MARKET
# ============================================================================

class MarketQuoteIn(BaseModel):
    """One provider's quote. Accepts `provider`, `src` or `source`."""
    model_config = _CAMEL

    provider: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("provider", "src", "source"),
        description="Price provider identifier",
    )
    price: Decimal = Field(..., gt=0, description="Last traded price")
    volume_24h: Optional[Decimal] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("volume24h", "volume_24h", "volume"),
        description="24h traded volume in quote currency",
    )
    timestamp: Optional[datetime] = None

    def to_quote(self) -> MarketQuote:
        if self.timestamp is None:
            return MarketQuote(self.provider, self.price, self.volume_24h)
        return MarketQuote(self.provider, self.price, self.volume_24h, self.timestamp)


# ============================================================================
# SOCIAL
# ============================================================================

class DistributionIn(BaseModel):
    model_config = _CAMEL

    positive: Decimal = Field(default=Decimal("0"), ge=0)
    negative: Decimal = Field(default=Decimal("0"), ge=0)
    neutral: Decimal = Field(default=Decimal("0"), ge=0)


class SecondarySentimentIn(BaseModel):
    model_config = _CAMEL

    provider: str = Field(..., min_length=1)
    score: Decimal = Field(..., ge=0, le=100)


class SocialMetricsIn(BaseModel):
    """
    Aggregated social sentiment.

    sentimentScore defaults to neutral (50) so a payload carrying only
    mentionCount and distribution still reaches the impossibility check.
    """
    model_config = _CAMEL

    provider: str = Field(
        default=DEFAULT_SOCIAL_PROVIDER,
        min_length=1,
        validation_alias=AliasChoices("provider", "src", "source"),
    )
    sentiment_score: Decimal = Field(
        default=Decimal("50"),
        ge=0,
        le=100,
        validation_alias=AliasChoices("sentimentScore", "sentiment_score", "score"),
    )
    mention_count: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("mentionCount", "mention_count", "mentions"),
    )
    distribution: DistributionIn = Field(default_factory=DistributionIn)
    posts: List[str] = Field(default_factory=list)
    secondary: Optional[SecondarySentimentIn] = None

    def to_metrics(self) -> SocialMetrics:
        secondary = None
        if self.secondary is not None:
            secondary = SecondarySentiment(self.secondary.provider, self.secondary.score)
        return SocialMetrics(
            provider=self.provider,
            sentiment_score=self.sentiment_score,
            mention_count=self.mention_count,
            distribution=SentimentDistribution(
                positive=self.distribution.positive,
                negative=self.distribution.negative,
                neutral=self.distribution.neutral,
            ),
            posts=tuple(self.posts),
            secondary=secondary,
        )


# ============================================================================
# ON-CHAIN
# ============================================================================

class ChainTransactionIn(BaseModel):
    model_config = _CAMEL

    tx_hash: str = Field(default="", validation_alias=AliasChoices("txHash", "tx_hash", "hash"))
    from_address: str = Field(..., validation_alias=AliasChoices("from", "fromAddress", "from_address"))
    to_address: str = Field(..., validation_alias=AliasChoices("to", "toAddress", "to_address"))
    value_usd: Decimal = Field(..., ge=0, validation_alias=AliasChoices("valueUsd", "value_usd", "value"))


class OnChainFlowIn(BaseModel):
    """Categorized flow totals, or raw transactions to categorize."""
    model_config = _CAMEL

    provider: str = Field(
        default=DEFAULT_ONCHAIN_PROVIDER,
        min_length=1,
        validation_alias=AliasChoices("provider", "src", "source"),
    )
    exchange_deposits: Decimal = Field(
        default=Decimal("0"), ge=0,
        validation_alias=AliasChoices("exchangeDeposits", "exchange_deposits"),
    )
    exchange_withdrawals: Decimal = Field(
        default=Decimal("0"), ge=0,
        validation_alias=AliasChoices("exchangeWithdrawals", "exchange_withdrawals"),
    )
    peer_transfers: Decimal = Field(
        default=Decimal("0"), ge=0,
        validation_alias=AliasChoices("peerTransfers", "peer_transfers", "coldWalletTransfers"),
    )
    reported_volume_24h: Optional[Decimal] = Field(
        default=None, ge=0,
        validation_alias=AliasChoices("reportedVolume24h", "reported_volume_24h", "volume24h"),
    )
    transactions: List[ChainTransactionIn] = Field(default_factory=list)

    def to_summary(self) -> OnChainFlowSummary:
        return OnChainFlowSummary(
            provider=self.provider,
            exchange_deposits=self.exchange_deposits,
            exchange_withdrawals=self.exchange_withdrawals,
            peer_transfers=self.peer_transfers,
            reported_volume_24h=self.reported_volume_24h,
            transactions=tuple(
                ChainTransaction(t.tx_hash, t.from_address, t.to_address, t.value_usd)
                for t in self.transactions
            ),
        )


# ============================================================================
# NEWS
# ============================================================================

class NewsItemIn(BaseModel):
    model_config = _CAMEL

    provider: str = Field(default="news", validation_alias=AliasChoices("provider", "src", "source"))
    title: str
    url: Optional[str] = None
    published_at: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("publishedAt", "published_at")
    )


# ============================================================================
# REQUEST
# ============================================================================

class DomainDatasetIn(BaseModel):
    model_config = _CAMEL

    market: List[MarketQuoteIn] = Field(default_factory=list)
    social: Optional[SocialMetricsIn] = None
    onchain: Optional[OnChainFlowIn] = Field(
        default=None, validation_alias=AliasChoices("onchain", "onChain", "on_chain")
    )
    news: List[NewsItemIn] = Field(default_factory=list)

    def to_dataset(self) -> DomainDataset:
        return DomainDataset(
            market=tuple(q.to_quote() for q in self.market),
            social=self.social.to_metrics() if self.social is not None else None,
            onchain=self.onchain.to_summary() if self.onchain is not None else None,
            news=tuple(
                NewsItem(n.provider, n.title, n.url, n.published_at) for n in self.news
            ),
        )


class ValidationOptionsIn(BaseModel):
    model_config = _CAMEL

    timeout_ms: Optional[int] = Field(
        default=None,
        gt=0,
        le=MAX_TIMEOUT_MS,
        validation_alias=AliasChoices("timeoutMs", "timeout_ms"),
        description="Per-domain timeout override in milliseconds",
    )
    enabled_domains: Optional[List[Domain]] = Field(
        default=None,
        validation_alias=AliasChoices("enabledDomains", "enabled_domains"),
        description="Restrict validation to these domains",
    )


class ValidationRequest(BaseModel):
    """
    Request body for POST /api/veritas/validate.

    Reliability Level: SOVEREIGN TIER
    Input Constraints: Non-blank symbol; every domain optional
    Side Effects: None
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "example": {
                "symbol": "BTC",
                "domainDataset": {
                    "market": [
                        {"src": "coingecko", "price": "90000"},
                        {"src": "kraken", "price": "90900"},
                    ]
                },
                "options": {"timeoutMs": 5000},
            }
        },
    )

    symbol: str = Field(..., description="Asset symbol (e.g. BTC)")
    domain_dataset: DomainDatasetIn = Field(
        default_factory=DomainDatasetIn,
        validation_alias=AliasChoices("domainDataset", "domain_dataset", "data"),
    )
    options: Optional[ValidationOptionsIn] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Reject blank symbols."""
        v = v.strip()
        if not v:
            raise ValueError("[VER-001] symbol must be a non-blank string")
        return v

    def to_dataset(self) -> DomainDataset:
        return self.domain_dataset.to_dataset()

    def to_options(self) -> ValidationOptions:
        if self.options is None:
            return ValidationOptions()
        enabled: Optional[Tuple[Domain, ...]] = None
        if self.options.enabled_domains is not None:
            enabled = tuple(self.options.enabled_domains)
        return ValidationOptions(timeout_ms=self.options.timeout_ms, enabled_domains=enabled)


class ReviewRequest(BaseModel):
    """Request body for POST /api/veritas/alerts/{alert_id}/review."""
    reviewer: str = Field(..., min_length=1, description="Operator completing the review")
    notes: Optional[str] = Field(default=None, description="Optional review notes")
