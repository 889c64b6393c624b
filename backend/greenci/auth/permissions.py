"""
Permission constants: every action the dashboard API exposes.

Each permission follows the pattern `resource:action`. API keys and JWTs
carry a role, which maps to a set of these via ROLE_PERMISSIONS.
"""

from enum import Enum


class Permission(str, Enum):
    # ── Projects ──
    PROJECTS_READ = "projects:read"
    PROJECTS_MANAGE = "projects:manage"         # create, rename, delete

    # ── Metrics ──
    METRICS_READ = "metrics:read"
    METRICS_WRITE = "metrics:write"             # agent webhook ingestion
    METRICS_DELETE = "metrics:delete"

    # ── Optimizations ──
    OPTIMIZATIONS_READ = "optimizations:read"
    OPTIMIZATIONS_MANAGE = "optimizations:manage"  # create, apply, complete, fail

    # ── Agents ──
    AGENTS_READ = "agents:read"
    AGENTS_RUN = "agents:run"                   # trigger runs
    AGENTS_REPORT = "agents:report"             # status / completion webhooks

    # ── Carbon calculator ──
    CARBON_CALCULATE = "carbon:calculate"

    # ── Analysis ──
    ANALYSIS_RUN = "analysis:run"
