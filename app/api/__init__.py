# ============================================================================
# Veritas Protocol v1.0.0
# API Routes Module
# ============================================================================

from app.api.validation import router as validation_router
from app.api.monitoring import router as monitoring_router
from app.api.alerts import router as alerts_router

__all__ = ["validation_router", "monitoring_router", "alerts_router"]
