"""
Domain models — Pydantic types for the provisioning console.

All models are re-exported here for convenient access:

    from accountctl.core.models import Action, Plan, Result, ValidatedInput
"""

from accountctl.core.models.configs import (
    CONFIG_MODELS,
    PROVIDERS,
    AppConfig,
    AppConfigBase,
    GoogleWorkspaceConfig,
    JiraConfig,
    Microsoft365Config,
    SlackConfig,
    ZoomConfig,
)
from accountctl.core.models.job import Job, JobStatus
from accountctl.core.models.provisioning import (
    Action,
    ActionType,
    Plan,
    Result,
    ResultStatus,
    ValidatedInput,
)
from accountctl.core.models.request import Employee, ProvisioningRequest

__all__ = [
    # provisioning.py
    "Action",
    "ActionType",
    # configs.py
    "AppConfig",
    "AppConfigBase",
    "CONFIG_MODELS",
    # request.py
    "Employee",
    "GoogleWorkspaceConfig",
    # job.py
    "Job",
    "JobStatus",
    "JiraConfig",
    "Microsoft365Config",
    "PROVIDERS",
    "Plan",
    "ProvisioningRequest",
    "Result",
    "ResultStatus",
    "SlackConfig",
    "ValidatedInput",
    "ZoomConfig",
]
