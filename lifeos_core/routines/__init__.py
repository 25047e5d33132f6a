# =============================================================================
# lifeos_core/routines/__init__.py
# Daily routines: checklist model, legacy migration, counters
# =============================================================================

from .models import (
    RoutineDay,
    RoutineTemplate,
    DEFAULT_TEMPLATE,
    MORNING,
    EVENING,
    PERIODS,
    ROUTINE_COLLECTION,
    CURRENT_SCHEMA_VERSION,
    is_period_complete,
    detect_schema_version,
    routine_cache_key,
)
from .migrator import (
    RoutineCompletionMigrator,
    MigrationStatus,
    MigrationResult,
    LEGACY_KEY,
)
from .service import RoutineService
from .counters import (
    CompletionCounters,
    CompletionCounterService,
    CounterWindow,
    compute_counters,
    monthly_counts,
    percent_change,
)

__all__ = [
    # Model
    "RoutineDay",
    "RoutineTemplate",
    "DEFAULT_TEMPLATE",
    "MORNING",
    "EVENING",
    "PERIODS",
    "ROUTINE_COLLECTION",
    "CURRENT_SCHEMA_VERSION",
    "is_period_complete",
    "detect_schema_version",
    "routine_cache_key",
    # Migration
    "RoutineCompletionMigrator",
    "MigrationStatus",
    "MigrationResult",
    "LEGACY_KEY",
    # Service
    "RoutineService",
    # Counters
    "CompletionCounters",
    "CompletionCounterService",
    "CounterWindow",
    "compute_counters",
    "monthly_counts",
    "percent_change",
]
