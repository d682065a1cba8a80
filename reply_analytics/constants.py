"""Constants and enumerations for reply analytics."""

from enum import StrEnum
from typing import Final


# Backend limits
BACKEND_MAX_ROWS: Final[int] = 1000

# Batch fetching
DEFAULT_PAGE_SIZE: Final[int] = 500
DEFAULT_MAX_CONCURRENCY: Final[int] = 3
DEFAULT_WAVE_DELAY_SECONDS: Final[float] = 0.05

# Adapter defaults
DEFAULT_REQUESTS_PER_SECOND: Final[int] = 10
DEFAULT_REQUEST_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_MAX_RETRIES: Final[int] = 4

# Incremental loading (UI-paced consumers)
CLIENT_BATCH_SIZE: Final[int] = 60
MAX_CACHED_BATCHES: Final[int] = 20

# Dates
DEFAULT_RANGE_DAYS: Final[int] = 30
DAY_GROUPING_MAX_DAYS: Final[int] = 14
MAX_RESOLUTION_HOURS: Final[float] = 720.0
DEFAULT_TIMEZONE: Final[str] = "UTC"
WEEK_LABEL_DATE_FORMAT: Final[str] = "%d.%m.%Y"
WEEK_LABEL_SEPARATOR: Final[str] = " — "

# Scoring
MAX_QUALITY_SCORE: Final[int] = 100
CRITICAL_SCORE_CEILING: Final[int] = 50
NEEDS_WORK_SCORE_CEILING: Final[int] = 89

# Grouping
UNKNOWN_GROUP: Final[str] = "unknown"

# Output files
DEFAULT_DETAILED_OUTPUT: Final[str] = "detailed_stats.json"
DEFAULT_KPI_OUTPUT: Final[str] = "kpis.json"
DEFAULT_CORRELATION_OUTPUT: Final[str] = "correlation.json"
DEFAULT_FLOW_OUTPUT: Final[str] = "flow.json"

# JSON Serialization
JSON_INDENT: Final[int] = 2

# Numeric Constants
EXIT_CODE_ERROR: Final[int] = 1
PERCENT: Final[float] = 100.0


class Table(StrEnum):
    """Remote tables queried by the engine."""

    COMPARISONS = "ai_human_comparison"
    SUPPORT_THREADS = "support_threads_data"


class Procedure(StrEnum):
    """Server-side aggregate procedures."""

    KPI_STATS = "get_kpi_stats"
    BEST_CATEGORY = "get_best_category"
    CATEGORY_DISTRIBUTION = "get_category_distribution"


class Column(StrEnum):
    """Column names shared by both tables."""

    ID = "id"
    THREAD_ID = "thread_id"
    CREATED_AT = "created_at"
    HUMAN_REPLY_DATE = "human_reply_date"
    CATEGORY = "request_subtype"
    SUBCATEGORY = "request_sub_subtype"
    REQUEST_TYPE = "request_type"
    VERSION = "prompt_version"
    AGENT = "email"
    STATUS = "status"
    CHANGED = "changed"
    CLASSIFICATION = "change_classification"
    REVIEWER = "reviewer_name"
    AI_DRAFT = "ai_draft_reply"
    AI_REPLY = "ai_reply"
    HUMAN_REPLY = "human_reply"


# Column that uniquely identifies a row, per table
ROW_KEYS: Final[dict[str, str]] = {
    Table.COMPARISONS: Column.ID,
    Table.SUPPORT_THREADS: Column.THREAD_ID,
}


class DateField(StrEnum):
    """Which timestamp a filter's date range applies to."""

    CREATED = "created"
    HUMAN_REPLY = "human_reply"

    @property
    def column(self) -> str:
        """Column backing this date field."""
        if self is DateField.HUMAN_REPLY:
            return Column.HUMAN_REPLY_DATE
        return Column.CREATED_AT


class RequirementFlag(StrEnum):
    """Boolean requirement flags carried by support threads."""

    REQUIRES_REPLY = "requires_reply"
    REQUIRES_IDENTIFICATION = "requires_identification"
    REQUIRES_EDITING = "requires_editing"
    REQUIRES_SUBSCRIPTION_INFO = "requires_subscription_info"
    REQUIRES_TRACKING_INFO = "requires_tracking_info"


REQUIREMENT_FLAGS: Final[tuple[str, ...]] = tuple(RequirementFlag)


class SupportStatus(StrEnum):
    """Known support thread statuses."""

    PENDING_RESPONSE = "pending_response"
    WAITING_ON_CUSTOMER = "waiting_on_customer"
    RESOLVED = "resolved"
    ESCALATED = "escalated"
    IN_PROGRESS = "in_progress"
    REPLY_IS_READY = "Reply is ready"


# Statuses that count as "resolved" for flow and collection-rate metrics
RESOLVED_STATUSES: Final[frozenset[str]] = frozenset(
    {SupportStatus.RESOLVED, SupportStatus.REPLY_IS_READY}
)


class Partition(StrEnum):
    """Reporting bucket every classification label maps into."""

    QUALITY = "quality"
    ERROR = "error"
    EXCLUDED = "excluded"
    UNCLASSIFIED = "unclassified"


class ScoreGroup(StrEnum):
    """Display group for a quality score."""

    CRITICAL = "critical"
    NEEDS_WORK = "needs_work"
    GOOD = "good"
    EXCLUDED = "excluded"


class TrendDirection(StrEnum):
    """Direction of a period-over-period change."""

    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


class FlowNodeId(StrEnum):
    """Fixed nodes of the AI draft flow graph."""

    CREATED = "created"
    USED = "used"
    EDITED = "edited"
    REJECTED = "rejected"
    RESOLVED = "resolved"
    PENDING = "pending"


FLOW_NODE_LABELS: Final[dict[str, str]] = {
    FlowNodeId.CREATED: "AI Draft Created",
    FlowNodeId.USED: "Used As-Is",
    FlowNodeId.EDITED: "Edited",
    FlowNodeId.REJECTED: "No Draft",
    FlowNodeId.RESOLVED: "Resolved",
    FlowNodeId.PENDING: "Pending",
}


class FlowAttribution(StrEnum):
    """How resolved/pending outcomes are attributed to used/edited drafts."""

    PER_THREAD = "per_thread"
    EVEN_SPLIT = "even_split"


class ProcedureArg(StrEnum):
    """Argument names accepted by the aggregate procedures."""

    FROM_DATE = "p_from_date"
    TO_DATE = "p_to_date"
    VERSIONS = "p_versions"
    CATEGORIES = "p_categories"
    AGENTS = "p_agents"
    DATE_FIELD = "p_date_field"


class KpiStatKey(StrEnum):
    """Row keys returned by the KPI stats procedure."""

    TOTAL_RECORDS = "total_records"
    REVIEWED_RECORDS = "reviewed_records"
    EXCLUDED_RECORDS = "context_shift_records"
    QUALITY_RECORDS = "quality_records"
    CHANGED_RECORDS = "changed_records"


class CategoryStatKey(StrEnum):
    """Row keys returned by the category procedures."""

    CATEGORY = "category"
    TOTAL_RECORDS = "total_records"
    UNCHANGED_RECORDS = "unchanged_records"
    QUALITY_PERCENTAGE = "quality_percentage"


class LogMessage(StrEnum):
    """Log message templates."""

    COUNT_RESULT = "Counted {} rows in {}"
    NOTHING_TO_FETCH = "No rows in {} match the filter, skipping page fetches"
    FETCH_PLAN = "Fetching {} rows from {} in {} pages of {} ({} concurrent)"
    PAGE_FETCHED = "Fetched page {} of {} ({} rows)"
    PAGE_FAILED = "Page {} of {} (offset {}, limit {}) failed: {}"
    WAVE_CANCELLED = "Cancellation requested, stopping after {} of {} pages"
    PARTIAL_FETCH = "{} of {} pages failed for {}, returning {} rows"
    ALL_PAGES_FAILED = "All {} pages failed for {}"
    COUNT_FAILED = "Count query failed for {}: {}"
    FETCH_COMPLETE = "Fetched {} rows from {} in {} pages"
    DUPLICATES_DROPPED = "Dropped {} duplicate rows from {}"
    ROWS_TRUNCATED = "Truncated {} rows beyond the counted {} for {}"
    UNKNOWN_LABEL = "Unknown classification label {!r}, counting as unclassified"
    CACHE_INVALIDATED = "Filter changed, dropping {} cached batches"
    CACHE_HIT = "Batch {} served from cache"
    CACHE_EVICTED = "Batch {} was evicted from the cache"
    PROCEDURE_CALL = "Calling procedure {}"
    SAVED_JSON = "Saved {} to {}"
    SAVED_CSV = "Saved {} rows to {}"
    ERROR_OCCURRED = "Error occurred: {}"


class CliHelp(StrEnum):
    """CLI help messages."""

    APP = "Batched aggregation engine for AI reply quality analytics"
    DATE_FROM = "Start of the date range (inclusive), ISO date or datetime. Defaults to 30 days ago."
    DATE_TO = "End of the date range (exclusive), ISO date or datetime. Defaults to the end of today."
    DATE_FIELD = "Date column the range applies to: created or human_reply."
    VERSIONS = "Prompt version to include (repeatable)."
    CATEGORIES = "Category to include (repeatable)."
    AGENTS = "Agent email to include (repeatable)."
    STATUSES = "Thread status to include (repeatable)."
    PAGE_SIZE = "Rows per page request (the backend caps responses at 1000 rows)."
    CONCURRENCY = "Maximum concurrent page requests per wave."
    OUTPUT = "Output file path for the JSON result."
    CSV_OUTPUT = "Optional CSV output path for the detailed table."
    PUSHDOWN = "Aggregate on the server via stored procedures instead of fetching rows."
    ATTRIBUTION = "How outcomes are attributed to used/edited drafts: per_thread or even_split."
    VERBOSE = "Enable debug logging."
