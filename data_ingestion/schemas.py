"""
============================================================================
Veritas Protocol v1.0.0
Data Ingestion Schemas - DomainDataset and Supporting Types
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All prices and volumes use decimal.Decimal
Traceability: Datasets are passed through validation with a correlation_id

DOMAIN DATASET:
    The DomainDataset is the immutable bundle of already-collected data for
    one symbol. It is assembled by the upstream collector and handed to the
    validation layer as-is:
    - Market quotes (one per price provider)
    - Social metrics (aggregated sentiment + optional secondary estimate)
    - On-chain flow summary (categorized exchange/peer flows)
    - News items (carried through, not scored)

Key Constraints:
- Decimal-only math for all prices, volumes and scores
- All timestamps in UTC
- Immutable after creation (discarding a domain yields a new dataset)
============================================================================
"""

from decimal import Decimal
from typing import Optional, Dict, Any, Tuple, List
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone


# =============================================================================
# Constants
# =============================================================================

# Decimal precision for prices
PRECISION_PRICE = Decimal("0.00000001")

# Decimal precision for sentiment scores (0-100 scale)
PRECISION_SCORE = Decimal("0.01")

# Sentiment scale bounds
SENTIMENT_MIN = Decimal("0")
SENTIMENT_MAX = Decimal("100")

# Domain keys as they appear in a DomainDataset
DOMAIN_MARKET = "market"
DOMAIN_SOCIAL = "social"
DOMAIN_ONCHAIN = "onchain"
DOMAIN_NEWS = "news"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_decimal(value: Any) -> Decimal:
    """Coerce int/str/float input to Decimal via str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# =============================================================================
# Source Readings
# =============================================================================

@dataclass(frozen=True)
class SourceReading:
    """
    One provider's value for a given metric.

    Multiple readings of the same metric across providers are the unit
    validators compare.

    Reliability Level: L6 Critical
    Input Constraints: provider must be non-empty
    Side Effects: None (immutable)
    """
    provider: str
    metric: str
    value: Decimal
    timestamp: datetime = field(default_factory=_utc_now)

    def __post_init__(self):
        if not self.provider or not self.provider.strip():
            raise ValueError("Invalid reading: provider must be non-empty")
        object.__setattr__(self, "value", _as_decimal(self.value))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "metric": self.metric,
            "value": str(self.value),
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# Market Domain
# =============================================================================

@dataclass(frozen=True)
class MarketQuote:
    """
    Price/volume quote from a single market data provider.

    ============================================================================
    FIELDS:
    ============================================================================
    - provider: Provider identifier (e.g., 'coingecko', 'kraken')
    - price: Last traded price (Decimal, positive)
    - volume_24h: 24-hour traded volume in quote currency (optional)
    - timestamp: Quote timestamp (UTC)
    ============================================================================

    Reliability Level: L6 Critical
    Input Constraints: price must be positive, volume non-negative
    Side Effects: None (immutable)
    """
    provider: str
    price: Decimal
    volume_24h: Optional[Decimal] = None
    timestamp: datetime = field(default_factory=_utc_now)

    def __post_init__(self):
        """Validate quote data after initialization."""
        if not self.provider or not self.provider.strip():
            raise ValueError("Invalid quote: provider must be non-empty")

        price = _as_decimal(self.price)
        if price <= Decimal("0"):
            raise ValueError(
                f"Invalid quote: price must be positive. "
                f"provider={self.provider}, price={price}"
            )
        object.__setattr__(self, "price", price)

        if self.volume_24h is not None:
            volume = _as_decimal(self.volume_24h)
            if volume < Decimal("0"):
                raise ValueError(
                    f"Invalid quote: volume must be non-negative. "
                    f"provider={self.provider}, volume_24h={volume}"
                )
            object.__setattr__(self, "volume_24h", volume)

    def readings(self) -> List[SourceReading]:
        """Split the quote into per-metric readings."""
        result = [SourceReading(self.provider, "price", self.price, self.timestamp)]
        if self.volume_24h is not None:
            result.append(
                SourceReading(self.provider, "volume_24h", self.volume_24h, self.timestamp)
            )
        return result

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "price": str(self.price),
            "volume_24h": str(self.volume_24h) if self.volume_24h is not None else None,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# Social Domain
# =============================================================================

@dataclass(frozen=True)
class SentimentDistribution:
    """
    Positive/negative/neutral split of social mentions (percentages or counts).

    Reliability Level: L6 Critical
    Input Constraints: All components non-negative
    """
    positive: Decimal = Decimal("0")
    negative: Decimal = Decimal("0")
    neutral: Decimal = Decimal("0")

    def __post_init__(self):
        for name in ("positive", "negative", "neutral"):
            value = _as_decimal(getattr(self, name))
            if value < Decimal("0"):
                raise ValueError(
                    f"Invalid distribution: {name} must be non-negative, got {value}"
                )
            object.__setattr__(self, name, value)

    def has_nonzero_component(self) -> bool:
        return any(v != Decimal("0") for v in (self.positive, self.negative, self.neutral))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "positive": str(self.positive),
            "negative": str(self.negative),
            "neutral": str(self.neutral),
        }


@dataclass(frozen=True)
class SecondarySentiment:
    """Independently derived sentiment estimate from a second provider (0-100)."""
    provider: str
    score: Decimal

    def __post_init__(self):
        score = _as_decimal(self.score)
        if score < SENTIMENT_MIN or score > SENTIMENT_MAX:
            raise ValueError(
                f"Invalid secondary sentiment: score must be within 0-100, got {score}"
            )
        object.__setattr__(self, "score", score)

    def to_dict(self) -> Dict[str, Any]:
        return {"provider": self.provider, "score": str(self.score)}


@dataclass(frozen=True)
class SocialMetrics:
    """
    Aggregated social sentiment for a symbol.

    ============================================================================
    FIELDS:
    ============================================================================
    - provider: Primary aggregator identifier
    - sentiment_score: Aggregated sentiment on a 0-100 scale (50 = neutral)
    - mention_count: Number of mentions in the sampling window
    - distribution: Positive/negative/neutral breakdown
    - posts: Raw post texts available for secondary re-scoring
    - secondary: Pre-computed secondary estimate, if the collector has one
    ============================================================================

    Reliability Level: L6 Critical
    Input Constraints: sentiment_score within 0-100, mention_count >= 0
    Side Effects: None (immutable)
    """
    provider: str
    sentiment_score: Decimal
    mention_count: int
    distribution: SentimentDistribution = field(default_factory=SentimentDistribution)
    posts: Tuple[str, ...] = ()
    secondary: Optional[SecondarySentiment] = None
    timestamp: datetime = field(default_factory=_utc_now)

    def __post_init__(self):
        score = _as_decimal(self.sentiment_score)
        if score < SENTIMENT_MIN or score > SENTIMENT_MAX:
            raise ValueError(
                f"Invalid social metrics: sentiment_score must be within 0-100, got {score}"
            )
        object.__setattr__(self, "sentiment_score", score)

        if self.mention_count < 0:
            raise ValueError(
                f"Invalid social metrics: mention_count must be non-negative, "
                f"got {self.mention_count}"
            )
        object.__setattr__(self, "posts", tuple(self.posts))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "sentiment_score": str(self.sentiment_score),
            "mention_count": self.mention_count,
            "distribution": self.distribution.to_dict(),
            "posts": list(self.posts),
            "secondary": self.secondary.to_dict() if self.secondary else None,
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# On-Chain Domain
# =============================================================================

@dataclass(frozen=True)
class ChainTransaction:
    """Single on-chain transfer (notional value in USD)."""
    tx_hash: str
    from_address: str
    to_address: str
    value_usd: Decimal

    def __post_init__(self):
        value = _as_decimal(self.value_usd)
        if value < Decimal("0"):
            raise ValueError(
                f"Invalid transaction: value_usd must be non-negative. "
                f"tx_hash={self.tx_hash}"
            )
        object.__setattr__(self, "value_usd", value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.tx_hash,
            "from": self.from_address,
            "to": self.to_address,
            "value_usd": str(self.value_usd),
        }


@dataclass(frozen=True)
class OnChainFlowSummary:
    """
    Categorized blockchain flow for the same window as reported trading volume.

    ============================================================================
    FIELDS:
    ============================================================================
    - provider: On-chain data provider identifier
    - exchange_deposits: Notional flowing into exchange-custodied addresses
    - exchange_withdrawals: Notional flowing out of exchange-custodied addresses
    - peer_transfers: Notional moving between non-exchange (peer/cold) wallets
    - reported_volume_24h: Trading volume for the same window (optional)
    - transactions: Raw transfers, categorized when totals are not supplied
    ============================================================================

    Reliability Level: L6 Critical
    Input Constraints: All flow totals non-negative
    Side Effects: None (immutable)
    """
    provider: str
    exchange_deposits: Decimal = Decimal("0")
    exchange_withdrawals: Decimal = Decimal("0")
    peer_transfers: Decimal = Decimal("0")
    reported_volume_24h: Optional[Decimal] = None
    transactions: Tuple[ChainTransaction, ...] = ()
    timestamp: datetime = field(default_factory=_utc_now)

    def __post_init__(self):
        for name in ("exchange_deposits", "exchange_withdrawals", "peer_transfers"):
            value = _as_decimal(getattr(self, name))
            if value < Decimal("0"):
                raise ValueError(
                    f"Invalid flow summary: {name} must be non-negative, got {value}"
                )
            object.__setattr__(self, name, value)

        if self.reported_volume_24h is not None:
            volume = _as_decimal(self.reported_volume_24h)
            if volume < Decimal("0"):
                raise ValueError(
                    f"Invalid flow summary: reported_volume_24h must be non-negative, "
                    f"got {volume}"
                )
            object.__setattr__(self, "reported_volume_24h", volume)
        object.__setattr__(self, "transactions", tuple(self.transactions))

    @property
    def exchange_flow(self) -> Decimal:
        """Deposits plus withdrawals."""
        return self.exchange_deposits + self.exchange_withdrawals

    @property
    def total_flow(self) -> Decimal:
        return self.exchange_flow + self.peer_transfers

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "exchange_deposits": str(self.exchange_deposits),
            "exchange_withdrawals": str(self.exchange_withdrawals),
            "peer_transfers": str(self.peer_transfers),
            "reported_volume_24h": (
                str(self.reported_volume_24h)
                if self.reported_volume_24h is not None else None
            ),
            "transactions": [t.to_dict() for t in self.transactions],
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# News
# =============================================================================

@dataclass(frozen=True)
class NewsItem:
    """News headline carried through validation untouched."""
    provider: str
    title: str
    url: Optional[str] = None
    published_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "title": self.title,
            "url": self.url,
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }


# =============================================================================
# Domain Dataset
# =============================================================================

@dataclass(frozen=True)
class DomainDataset:
    """
    One bundle of already-collected data for a symbol.

    Immutable input to validation; owned by the caller for the duration of
    one validation call. A domain is "present" when it carries data: at
    least one market quote, a SocialMetrics or an OnChainFlowSummary.

    Reliability Level: L6 Critical
    Input Constraints: None (all domains optional)
    Side Effects: None (immutable)
    """
    market: Tuple[MarketQuote, ...] = ()
    social: Optional[SocialMetrics] = None
    onchain: Optional[OnChainFlowSummary] = None
    news: Tuple[NewsItem, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "market", tuple(self.market))
        object.__setattr__(self, "news", tuple(self.news))

    def present_domains(self) -> List[str]:
        """Scored domains carrying data, in canonical order."""
        domains = []
        if self.market:
            domains.append(DOMAIN_MARKET)
        if self.social is not None:
            domains.append(DOMAIN_SOCIAL)
        if self.onchain is not None:
            domains.append(DOMAIN_ONCHAIN)
        return domains

    def without(self, domain: str) -> "DomainDataset":
        """Return a copy with one domain removed."""
        if domain == DOMAIN_MARKET:
            return replace(self, market=())
        if domain == DOMAIN_SOCIAL:
            return replace(self, social=None)
        if domain == DOMAIN_ONCHAIN:
            return replace(self, onchain=None)
        if domain == DOMAIN_NEWS:
            return replace(self, news=())
        raise ValueError(f"Unknown domain: {domain}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/persistence."""
        return {
            "market": [q.to_dict() for q in self.market],
            "social": self.social.to_dict() if self.social else None,
            "onchain": self.onchain.to_dict() if self.onchain else None,
            "news": [n.to_dict() for n in self.news],
        }
