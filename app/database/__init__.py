# ============================================================================
# Veritas Protocol v1.0.0
# Database Module - SQLAlchemy Session Management
# ============================================================================

from app.database.session import get_db, get_engine, get_session_factory, ensure_schema

__all__ = ["get_db", "get_engine", "get_session_factory", "ensure_schema"]
