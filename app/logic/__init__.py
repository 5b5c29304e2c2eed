"""
============================================================================
Veritas Protocol v1.0.0
Logic Layer - Domain Validators and Confidence Scoring
============================================================================

SOVEREIGN TIER INFRASTRUCTURE

This module contains the pure validation logic:
- MarketValidator: cross-provider price divergence and volume concentration
- SocialValidator: sentiment impossibility and secondary cross-check
- OnChainValidator: flow/volume reconciliation
- ConfidenceCalculator: per-domain scores into one breakdown
- Quality report: recommendations and reliability guidance

Validators are functions of (dataset, trust snapshot); they never write
reliability scores themselves.

============================================================================
"""

from app.logic.market_validator import MarketValidator
from app.logic.social_validator import SocialValidator
from app.logic.onchain_validator import OnChainValidator, flow_ratio_score
from app.logic.confidence_calculator import (
    ConfidenceCalculator,
    get_confidence_level,
    get_confidence_recommendation,
)
from app.logic.quality_report import (
    QualityReport,
    Recommendation,
    ReliabilityGuidance,
    generate_quality_report,
)

__all__ = [
    # Validators
    "MarketValidator",
    "SocialValidator",
    "OnChainValidator",
    "flow_ratio_score",
    # Confidence
    "ConfidenceCalculator",
    "get_confidence_level",
    "get_confidence_recommendation",
    # Quality report
    "QualityReport",
    "Recommendation",
    "ReliabilityGuidance",
    "generate_quality_report",
]
