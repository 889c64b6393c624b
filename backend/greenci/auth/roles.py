"""
Role definitions: which bundles of permissions make up each role.

    VIEWER < OPERATOR < ADMIN

AGENT is the role of CI agents and the worker: it reports metrics, status
and completions but cannot manage projects.
"""

from enum import Enum
from greenci.auth.permissions import Permission


class Role(str, Enum):
    VIEWER = "viewer"
    OPERATOR = "operator"
    ADMIN = "admin"
    AGENT = "agent"


# ── Viewer: read-only dashboard plus the stateless calculator ──
_VIEWER_PERMS: set[Permission] = {
    Permission.PROJECTS_READ,
    Permission.METRICS_READ,
    Permission.OPTIMIZATIONS_READ,
    Permission.AGENTS_READ,
    Permission.CARBON_CALCULATE,
}

# ── Operator: viewer + run agents and analyses, act on optimizations ──
_OPERATOR_PERMS: set[Permission] = {
    *_VIEWER_PERMS,
    Permission.OPTIMIZATIONS_MANAGE,
    Permission.AGENTS_RUN,
    Permission.ANALYSIS_RUN,
}

# ── Admin: everything ──
_ADMIN_PERMS: set[Permission] = {p for p in Permission}

# ── Agent: webhook ingestion for CI agents and the worker ──
_AGENT_PERMS: set[Permission] = {
    Permission.PROJECTS_READ,
    Permission.METRICS_READ,
    Permission.METRICS_WRITE,
    Permission.OPTIMIZATIONS_READ,
    Permission.OPTIMIZATIONS_MANAGE,
    Permission.AGENTS_READ,
    Permission.AGENTS_REPORT,
    Permission.CARBON_CALCULATE,
    Permission.ANALYSIS_RUN,
}


ROLE_PERMISSIONS: dict[Role, set[Permission]] = {
    Role.VIEWER: _VIEWER_PERMS,
    Role.OPERATOR: _OPERATOR_PERMS,
    Role.ADMIN: _ADMIN_PERMS,
    Role.AGENT: _AGENT_PERMS,
}
