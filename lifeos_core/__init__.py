# =============================================================================
# lifeos_core/__init__.py
# Offline-tolerant sync engine for the Life OS dashboard
# =============================================================================

__version__ = "1.0.0"
