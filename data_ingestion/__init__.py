"""
============================================================================
Veritas Protocol v1.0.0
Data Ingestion Package - Domain Dataset Types
============================================================================

Reliability Level: L6 Critical
Decimal Integrity: All prices and volumes use decimal.Decimal
Traceability: Datasets travel with the validation call's correlation_id

This package defines the shapes the upstream collector hands to the
validation layer. It performs no primary data collection:

    1. Market quotes (one per price provider)
    2. Social metrics (aggregated sentiment, optional raw posts)
    3. On-chain flow summaries (categorized by known exchange addresses)
    4. News items (carried through unscored)

============================================================================
"""

from data_ingestion.schemas import (
    DomainDataset,
    MarketQuote,
    SocialMetrics,
    SentimentDistribution,
    SecondarySentiment,
    OnChainFlowSummary,
    ChainTransaction,
    NewsItem,
    SourceReading,
)
from data_ingestion.flow_categorizer import (
    FlowCategorizer,
    load_exchange_addresses,
)

__all__ = [
    # Schemas
    "DomainDataset",
    "MarketQuote",
    "SocialMetrics",
    "SentimentDistribution",
    "SecondarySentiment",
    "OnChainFlowSummary",
    "ChainTransaction",
    "NewsItem",
    "SourceReading",
    # Categorization
    "FlowCategorizer",
    "load_exchange_addresses",
]
