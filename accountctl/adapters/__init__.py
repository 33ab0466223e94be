"""Adapters — vendor integrations behind the Provisioner contract.

Public re-exports for convenient access.
"""

from accountctl.adapters.base import Provisioner
from accountctl.adapters.mock import MockProvisioner
from accountctl.adapters.outcome import ApplyOutcome, Step, StepWarning
from accountctl.adapters.registry import ProvisionerRegistry

__all__ = [
    "ApplyOutcome",
    "MockProvisioner",
    "Provisioner",
    "ProvisionerRegistry",
    "Step",
    "StepWarning",
]
