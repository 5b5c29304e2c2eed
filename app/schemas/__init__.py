# ============================================================================
# Veritas Protocol v1.0.0
# Pydantic Schemas - Request Validation Layer
# ============================================================================

from app.schemas.validation import ValidationRequest, ReviewRequest

__all__ = ["ValidationRequest", "ReviewRequest"]
