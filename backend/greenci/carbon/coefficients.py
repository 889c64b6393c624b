"""
Coefficients and policy constants for the carbon model and pipeline analyzer.

All values are heuristics, not measurements. They are kept in one place so
that the dashboard's methodology page and the calculator agree.
"""

# ── Energy model ─────────────────────────────────────────────────────────────

DEFAULT_WATTS_PER_RUNNER = 50.0
DEFAULT_GRID_INTENSITY = "global_average"

# Annual average grid carbon intensity, kg CO2 per kWh
GRID_INTENSITY_KG_PER_KWH: dict[str, float] = {
    "global_average": 0.475,
    "us_average": 0.386,
    "eu_average": 0.276,
    "uk": 0.233,
    "france": 0.056,
    "germany": 0.366,
    "india": 0.708,
}

JOB_OVERHEAD_SECONDS = 30
MAX_PIPELINE_DURATION_SECONDS = 86400

# (max concurrently running jobs, efficiency factor), ascending
EFFICIENCY_FACTORS: list[tuple[int, float]] = [
    (2, 1.0),
    (5, 0.95),
]
EFFICIENCY_FACTOR_FLOOR = 0.9

# ── Confidence ───────────────────────────────────────────────────────────────

CONFIDENCE_MISSING_DURATION = 0.5
CONFIDENCE_NO_JOBS = 0.3
CONFIDENCE_MANY_JOBS = 1.1
CONFIDENCE_MANY_JOBS_THRESHOLD = 10
PREDICTION_CONFIDENCE = 0.85

# ── Eco score ────────────────────────────────────────────────────────────────

OPTIMAL_DURATION_SECONDS = 300
MAX_DURATION_PENALTY = 25
OPTIMAL_JOB_COUNT = 5
PENALTY_PER_EXTRA_JOB = 2
MAX_JOB_COUNT_PENALTY = 30
CACHE_EFFICIENCY_THRESHOLD = 0.7
CACHE_EFFICIENCY_PENALTY = 15
DEFAULT_CACHE_EFFICIENCY = 0.5
CACHE_HIT_MAX_SECONDS = 30
PARALLEL_EFFICIENCY_THRESHOLD = 0.6
PARALLEL_EFFICIENCY_PENALTY = 10
DEFAULT_PARALLEL_EFFICIENCY = 0.5
NEGATIVE_TREND_THRESHOLD = 10
NEGATIVE_TREND_PENALTY = 5

# (minimum score, grade), descending
GRADE_THRESHOLDS: list[tuple[int, str]] = [
    (90, "A"),
    (75, "B"),
    (60, "C"),
    (40, "D"),
]
LOWEST_GRADE = "F"

# ── Impact projection ────────────────────────────────────────────────────────

DAYS_PER_YEAR = 365
CO2_KG_PER_TREE_YEAR = 21
CO2_KG_PER_CAR_YEAR = 4600
DEFAULT_PIPELINES_PER_DAY = 10

# ── Pipeline analyzer policy ─────────────────────────────────────────────────

DEFAULT_MAX_PARALLEL_PER_STAGE = 10
PARALLEL_SLOT_GAIN_SECONDS = 30
BOTTLENECK_MULTIPLIER = 2
CACHE_INEFFICIENCY_HIT_RATE = 50
CACHE_INSIGHT_HIT_RATE = 70
UNDERUTILIZATION_AVG_PARALLELISM = 2
QUICK_WIN_MAX_SAVINGS_SECONDS = 60
AUTOMATABLE_CATEGORIES = frozenset({"caching", "parallelization"})
