"""
Configuration: status registry, score thresholds, defaults, settings.

ACTIVITY_STATUS_CONFIG maps each activity status to its display label,
color, and the day threshold used to derive it from the last activity date.
"""

import os
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Activity status registry
# ---------------------------------------------------------------------------
# threshold_days: upper bound (inclusive) on days since last activity
ACTIVITY_STATUS_CONFIG: dict[str, dict] = {
    "ACTIVE": {
        "label": "Active",
        "color": "green",
        "threshold_days": 30,
        "description": "Activity within the last 30 days",
    },
    "MODERATE": {
        "label": "Moderate",
        "color": "amber",
        "threshold_days": 90,
        "description": "Some activity in the last 30-90 days",
    },
    "LOW": {
        "label": "Low",
        "color": "red",
        "threshold_days": None,
        "description": "No activity in 90+ days",
    },
    "NO_ACTIVITY": {
        "label": "No Activity",
        "color": "grey",
        "threshold_days": None,
        "description": "No recorded activity",
    },
}

ACTIVITY_STATUSES = list(ACTIVITY_STATUS_CONFIG)

# Upstream views still emit the older status name
ACTIVITY_STATUS_ALIASES: dict[str, str] = {
    "STALE": "LOW",
    "INACTIVE": "NO_ACTIVITY",
}

DEFAULT_STATUS_COLOR = "grey"

# ---------------------------------------------------------------------------
# Engagement score
# ---------------------------------------------------------------------------
SCORE_MIN = 0.0
SCORE_MAX = 100.0

# Color thresholds for cards and badges (lower bound, inclusive)
ENGAGEMENT_COLOR_THRESHOLDS: list[tuple[float, str]] = [
    (80.0, "green"),
    (40.0, "amber"),
    (0.0, "red"),
]

ENGAGEMENT_SCORE_RANGES: dict[str, dict] = {
    "LOW": {"min": 0, "max": 30, "label": "Low Engagement", "color": "red"},
    "MEDIUM": {"min": 31, "max": 70, "label": "Medium Engagement", "color": "amber"},
    "HIGH": {"min": 71, "max": 100, "label": "High Engagement", "color": "green"},
}

# Weights and caps for the engagement score formula
ENGAGEMENT_WEIGHTS: dict[str, dict] = {
    "lead_score": {"weight": 0.4, "per_unit": 1.0, "cap": 100.0},
    "interactions_last_30_days": {"weight": 0.3, "per_unit": 5.0, "cap": 30.0},
    "active_opportunities": {"weight": 0.2, "per_unit": 10.0, "cap": 20.0},
    "active_product_count": {"weight": 0.1, "per_unit": 2.0, "cap": 10.0},
}

RECOMMENDED_MIN_SCORE = 70.0
TOP_PERFORMER_COUNT = 5
FOLLOW_UP_SCORE_THRESHOLD = 75.0

# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------
TIMELINE_ACTIVITY_TYPES = [
    "CONTACT_UPDATE",
    "INTERACTION",
    "OPPORTUNITY_CREATED",
    "PRODUCT_ASSOCIATION",
]

TIMELINE_ACTIVITY_ICONS: dict[str, str] = {
    "CONTACT_UPDATE": "user-edit",
    "INTERACTION": "chat",
    "OPPORTUNITY_CREATED": "trending-up",
    "PRODUCT_ASSOCIATION": "package",
}

TIMELINE_ACTIVITY_COLORS: dict[str, str] = {
    "CONTACT_UPDATE": "blue",
    "INTERACTION": "green",
    "OPPORTUNITY_CREATED": "purple",
    "PRODUCT_ASSOCIATION": "orange",
}

# Group summary counter for each activity type
TIMELINE_SUMMARY_KEYS: dict[str, str] = {
    "INTERACTION": "interactions",
    "OPPORTUNITY_CREATED": "opportunities",
    "CONTACT_UPDATE": "contacts",
    "PRODUCT_ASSOCIATION": "products",
}

TIMELINE_SORT_FIELDS = ("activity_date", "timeline_rank", "activity_type")
TIMELINE_GROUP_CRITERIA = ("date", "activity_type", "principal", "source")

# Relative change beyond which a trend is "increasing" / "decreasing"
TREND_BAND = 0.10

# ---------------------------------------------------------------------------
# Products and contracts
# ---------------------------------------------------------------------------
PRODUCT_CATEGORIES = [
    "Protein", "Sauce", "Seasoning", "Beverage", "Snack",
    "Frozen", "Dairy", "Bakery", "Other",
]

CONTRACT_EXPIRING_DAYS = 30

CONTRACT_STATUS_COLORS: dict[str, str] = {
    "ACTIVE": "green",
    "PENDING": "blue",
    "EXPIRING_SOON": "amber",
    "EXPIRED": "red",
}

# ---------------------------------------------------------------------------
# Interactions and opportunities
# ---------------------------------------------------------------------------
INTERACTION_TYPES = ["EMAIL", "CALL", "IN_PERSON", "DEMO", "FOLLOW_UP"]

MIN_SUBJECT_LENGTH = 3
MAX_SUBJECT_LENGTH = 255
MAX_NOTES_LENGTH = 2000

OPPORTUNITY_STAGES = [
    "New Lead",
    "Initial Outreach",
    "Sample/Visit Offered",
    "Awaiting Response",
    "Feedback Logged",
    "Demo Scheduled",
    "Closed - Won",
]

ORGANIZATION_STATUSES = ["Active", "Inactive", "Prospect", "Customer", "Partner", "Vendor"]

RELATIONSHIP_TYPES = ["HAS_DISTRIBUTOR", "DIRECT"]

# ---------------------------------------------------------------------------
# Sorting and pagination defaults
# ---------------------------------------------------------------------------
PRINCIPAL_SORT_FIELDS = (
    "principal_name",
    "engagement_score",
    "lead_score",
    "last_activity_date",
    "total_opportunities",
    "total_interactions",
    "product_count",
    "principal_created_at",
)

PRODUCT_SORT_FIELDS = (
    "product_name",
    "product_category",
    "total_opportunities",
    "win_rate",
    "total_value",
    "performance_score",
)

DEFAULT_SORT_FIELD = "engagement_score"
DEFAULT_SORT_ORDER = "desc"
DEFAULT_PAGE_SIZE = 20
MAX_SEARCH_LENGTH = 255

RAG_HEX: dict[str, str] = {
    "green": "#2ecc71",
    "amber": "#f39c12",
    "red": "#e74c3c",
    "grey": "#95a5a6",
    "blue": "#3498db",
    "purple": "#8e44ad",
    "orange": "#e67e22",
}


# ---------------------------------------------------------------------------
# Runtime settings
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Settings:
    api_url: str
    api_key: str
    data_source: str
    timeout_seconds: float
    page_size: int

    @property
    def use_api(self) -> bool:
        return self.data_source == "api" and bool(self.api_url)


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def load_settings() -> Settings:
    """Read runtime settings from the environment.

    CRM_DATA_SOURCE selects "mock" (simulated data, the default) or "api".
    """
    try:
        timeout = float(_getenv("CRM_TIMEOUT_SECONDS", "15"))
    except ValueError:
        timeout = 15.0
    try:
        page_size = int(_getenv("CRM_PAGE_SIZE", str(DEFAULT_PAGE_SIZE)))
    except ValueError:
        page_size = DEFAULT_PAGE_SIZE

    return Settings(
        api_url=_getenv("CRM_API_URL").rstrip("/"),
        api_key=_getenv("CRM_API_KEY"),
        data_source=_getenv("CRM_DATA_SOURCE", "mock").lower(),
        timeout_seconds=timeout,
        page_size=max(page_size, 1),
    )
