"""Build and version information."""

from __future__ import annotations

import logging
import platform

logger = logging.getLogger(__name__)

NGM_BUILD_TS = "None"
NGM_GIT_HASH = "None"
NGM_GIT_BRANCH = "None"


def _version_fields() -> dict[str, str]:
    return {
        "Git Commit Hash": NGM_GIT_HASH,
        "Git Branch": NGM_GIT_BRANCH,
        "UTC Build Time": NGM_BUILD_TS,
        "Python Version": platform.python_version(),
    }


def get_ngm_info() -> str:
    """Return the version information as printed by ``--version``."""
    return "\n".join(f"{name}: {value}" for name, value in _version_fields().items())


def print_ngm_info() -> dict[str, str]:
    """Log the version information and return the logged fields."""
    fields = _version_fields()
    details = ", ".join(f"{name}={value}" for name, value in fields.items())
    logger.info("Welcome to ng-monitoring. %s", details)
    return fields