"""
Provisioner registry — central lookup for vendor adapters.

The orchestrator never holds adapters directly; it resolves them by
provider id through the registry. In mock mode every lookup returns a
``MockProvisioner`` so a whole request can be exercised without any
vendor credentials.
"""

from __future__ import annotations

import logging
from typing import Any

from accountctl.adapters.base import Provisioner
from accountctl.adapters.mock import MockProvisioner
from accountctl.core.models.configs import CONFIG_MODELS

logger = logging.getLogger(__name__)


class ProvisionerRegistry:
    """Registry of adapters keyed by provider id.

    Features:
        - Register/unregister adapters by provider id
        - Mock mode: resolve every known provider to a MockProvisioner
        - Query availability for the CLI and web API
    """

    def __init__(self, mock_mode: bool = False):
        self._provisioners: dict[str, Provisioner] = {}
        self._mock_mode = mock_mode
        self._mocks: dict[str, MockProvisioner] = {}

    @property
    def mock_mode(self) -> bool:
        return self._mock_mode

    def set_mock_mode(self, enabled: bool) -> None:
        self._mock_mode = enabled

    def register(self, provisioner: Provisioner) -> None:
        name = provisioner.name
        if name in self._provisioners:
            logger.warning("Overwriting existing provisioner: %s", name)
        self._provisioners[name] = provisioner
        logger.debug("Registered provisioner: %s", name)

    def unregister(self, name: str) -> None:
        self._provisioners.pop(name, None)

    def get(self, name: str) -> Provisioner | None:
        """Look up a provisioner (or its mock in mock mode)."""
        if self._mock_mode:
            if name not in CONFIG_MODELS:
                return None
            if name not in self._mocks:
                self._mocks[name] = MockProvisioner(name)
            return self._mocks[name]
        return self._provisioners.get(name)

    def __contains__(self, name: str) -> bool:
        return self.get(name) is not None

    def list_providers(self) -> list[str]:
        """Provider ids that currently resolve to an adapter."""
        if self._mock_mode:
            return list(CONFIG_MODELS)
        return list(self._provisioners)

    def provider_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every known provider, registered or not."""
        status = {}
        for name in CONFIG_MODELS:
            provisioner = self.get(name)
            if provisioner is None:
                status[name] = {"name": name, "registered": False, "available": False, "type": None}
                continue
            try:
                available = provisioner.is_available()
            except Exception as e:
                logger.debug("Availability check failed for %s: %s", name, e)
                available = False
            status[name] = {
                "name": name,
                "registered": True,
                "available": available,
                "type": provisioner.__class__.__name__,
            }
        return status
