"""
Error taxonomy for the web-edit pipeline.
Every error carries the pipeline stage it was raised in so the HTTP layer can
report it without parsing messages.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


# ----------------------------
# Stage labels
# ----------------------------

STAGE_LAUNCH = "browser_launch"
STAGE_NAVIGATION = "navigation"
STAGE_EXECUTION = "automation_execution"
STAGE_ASSET = "asset_fetch"
STAGE_RESULT = "result_extraction"


class AutomationError(Exception):
    """Base class; also used to wrap unexpected failures from the browser layer."""

    code = "automation_error"
    default_stage = STAGE_EXECUTION

    def __init__(self, message: str, stage: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage or self.default_stage

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "error": self.message, "stage": self.stage}


class LaunchError(AutomationError):
    code = "launch_error"
    default_stage = STAGE_LAUNCH


class NavigationTimeout(AutomationError):
    code = "navigation_timeout"
    default_stage = STAGE_NAVIGATION


class InterfaceNotFound(AutomationError):
    code = "interface_not_found"
    default_stage = STAGE_EXECUTION


class AssetFetchError(AutomationError):
    code = "asset_fetch_error"
    default_stage = STAGE_ASSET


class NoSubmitAffordance(AutomationError):
    code = "no_submit_affordance"
    default_stage = STAGE_EXECUTION


class NoResultFound(AutomationError):
    code = "no_result_found"
    default_stage = STAGE_RESULT
