"""
Proposal Suite: System-wide constants.

Every magic number lives here. If you find a literal in the codebase that is
not a local variable, it belongs here instead.
"""

# ---------------------------------------------------------------------------
# Heatmap grids (pixels)
# ---------------------------------------------------------------------------

CLICK_GRID_PX: int = 20          # click heatmap cell size
MOVEMENT_GRID_PX: int = 30       # hover/movement heatmap cell size
SCROLL_BAND_PX: int = 50         # scroll heatmap band height

ATTENTION_CLICK_WEIGHT: float = 3.0   # clicks count triple in attention maps

DEFAULT_HEATMAP_WIDTH: int = 1920
DEFAULT_HEATMAP_HEIGHT: int = 1080

# ---------------------------------------------------------------------------
# Click analytics
# ---------------------------------------------------------------------------

TOP_ELEMENTS_LIMIT: int = 20
MOST_CLICKED_DEFAULT_LIMIT: int = 10

# ---------------------------------------------------------------------------
# Scroll depth
# ---------------------------------------------------------------------------

DEPTH_BUCKET_COUNT: int = 10          # 0-10%, 10-20%, ... 90-100%
DEPTH_BUCKET_WIDTH: int = 10
DROP_OFF_MIN_RATE_PCT: float = 20.0   # only report drop-offs above this

# ---------------------------------------------------------------------------
# Engagement metrics
# ---------------------------------------------------------------------------

BOUNCE_MAX_SECONDS: float = 10.0
ENGAGED_MIN_TIME_MS: int = 30_000
ENGAGED_MIN_SCROLL_DEPTH: float = 30.0
TOP_SECTIONS_LIMIT: int = 3
REALTIME_DEFAULT_MINUTES: int = 5
REALTIME_TOP_REGIONS: int = 5
REALTIME_DEVICES = ("desktop", "mobile", "tablet")

# Attention score = 0.3 view rate + 0.3 interaction rate + dwell bonus
ATTENTION_VIEW_WEIGHT: float = 0.3
ATTENTION_INTERACTION_WEIGHT: float = 0.3
ATTENTION_DWELL_DIVISOR: float = 100.0
ATTENTION_DWELL_CAP: float = 40.0

# ---------------------------------------------------------------------------
# Predictive scoring
# ---------------------------------------------------------------------------

TIME_SPENT_SATURATION_S: float = 600.0    # 10 minutes = full marks
INTERACTIONS_SATURATION: int = 20
RETURNING_VISITOR_SCORE: float = 20.0
PRICING_VIEWED_SCORE: float = 25.0

FACTOR_WEIGHTS = {
    "time_spent":        0.20,
    "scroll_depth":      0.15,
    "interactions":      0.15,
    "returning_visitor": 0.10,
    "device_type":       0.05,
    "time_of_day":       0.05,
    "pricing_viewed":    0.30,
}

DEVICE_SCORES = {"desktop": 70.0, "laptop": 70.0, "tablet": 60.0, "mobile": 50.0}
DEVICE_SCORE_DEFAULT: float = 50.0

TIME_OF_DAY_SCORES = {"business": 80.0, "evening": 60.0, "early_morning": 50.0, "night": 40.0}
TIME_OF_DAY_SCORE_DEFAULT: float = 60.0

# Logistic approximation: z = intercept + per-point slopes + boolean bumps
LOGIT_INTERCEPT: float = -5.0
LOGIT_ENGAGEMENT_SLOPE: float = 0.05
LOGIT_QUALITY_SLOPE: float = 0.03
LOGIT_PRICING_BONUS: float = 2.0
LOGIT_RETURNING_BONUS: float = 1.5
LOGIT_DEEP_SCROLL_BONUS: float = 1.0
LOGIT_LONG_VISIT_BONUS: float = 1.0
DEEP_SCROLL_DEPTH: float = 80.0
LONG_VISIT_SECONDS: float = 180.0

HIGH_CONVERSION_P: float = 0.7
MODERATE_CONVERSION_P: float = 0.4
CASE_STUDY_CONVERSION_P: float = 0.5

# ---------------------------------------------------------------------------
# Proposals / payments
# ---------------------------------------------------------------------------

SLUG_BYTES: int = 9                     # token_urlsafe(9) -> 12 chars
TEAM_SLUG_BYTES: int = 8
DEFAULT_DEPOSIT_FRACTION: float = 0.5
VIEW_TIMELINE_DAYS: int = 30
RECENT_VIEWERS_DEFAULT_LIMIT: int = 10
