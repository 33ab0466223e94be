"""
Zoom adapter — Zoom REST API v2 with Server-to-Server OAuth.

New users are created with ``action=create``: Zoom emails them an
activation link and the account stays ``pending`` until they accept,
which the Result reports as ``metadata.activation``.
"""

from __future__ import annotations

import logging
import urllib.parse
from functools import partial
from typing import Any

from accountctl.adapters.base import Provisioner
from accountctl.adapters.http import HttpClient
from accountctl.adapters.outcome import ApplyOutcome, Step
from accountctl.core.config.catalog import Catalog
from accountctl.core.errors import NotFoundError, ProvisioningError, VendorError
from accountctl.core.models.configs import ZOOM, ZoomConfig
from accountctl.core.models.provisioning import Action, Plan, Result, ValidatedInput

logger = logging.getLogger(__name__)

API_URL = "https://api.zoom.us/v2"
TOKEN_URL = "https://zoom.us/oauth/token"

# Zoom error code for "User does not exist"
USER_NOT_FOUND = 1001

ADD_ON_SETTINGS: dict[str, dict[str, Any]] = {
    "webinar": {"feature": {"webinar": True}},
    "large_meeting": {"feature": {"large_meeting": True}},
    "cloud_recording": {"recording": {"cloud_recording": True}},
}


class ZoomClient:
    def __init__(self, http: HttpClient):
        self.http = http

    def get_user(self, email: str) -> dict[str, Any] | None:
        try:
            return self.http.get(f"users/{urllib.parse.quote(email, safe='@')}")
        except NotFoundError:
            return None
        except VendorError as e:
            payload = e.payload if isinstance(e.payload, dict) else {}
            if payload.get("code") == USER_NOT_FOUND:
                return None
            raise

    def create_user(self, user_info: dict[str, Any]) -> dict[str, Any]:
        return self.http.post("users", json_body={"action": "create", "user_info": user_info})

    def update_user(self, user_id: str, body: dict[str, Any]) -> None:
        self.http.patch(f"users/{user_id}", json_body=body)

    def update_settings(self, user_id: str, settings: dict[str, Any]) -> None:
        self.http.patch(f"users/{user_id}/settings", json_body=settings)

    def set_status(self, user_id: str, action: str) -> None:
        self.http.put(f"users/{user_id}/status", json_body={"action": action})


class ZoomProvisioner(Provisioner):
    """Provision Zoom users, license type and add-on features."""

    config_model = ZoomConfig
    display_name = "Zoom"
    description = "Zoom meetings license and add-ons"

    def __init__(self, client: ZoomClient, *, catalog: Catalog | None = None,
                 web_url: str = "https://zoom.us"):
        self.client = client
        self.catalog = catalog or Catalog()
        self.web_url = web_url.rstrip("/")

    @property
    def name(self) -> str:
        return ZOOM

    def check_config(self, config: ZoomConfig) -> list[str]:
        problems = []
        if config.license_type not in self.catalog.zoom_license_types:
            problems.append(f"licenseType: unknown license type {config.license_type!r}")
        unknown = [a for a in config.add_ons if a not in self.catalog.zoom_add_ons]
        if unknown:
            problems.append(f"addOns: unknown add-on(s) {', '.join(unknown)}")
        return problems

    def _profile_link(self, user_id: str) -> str:
        return f"{self.web_url}/user/{user_id}/profile"

    # ── Plan ────────────────────────────────────────────────────

    def plan(self, validated: ValidatedInput) -> Plan:
        cfg: ZoomConfig = self.load_config(validated)
        email = cfg.work_email

        if cfg.deactivating:
            return Plan(
                provider=self.name,
                actions=[Action(type="update", resource="user", required=True,
                                details=f"Deactivate Zoom user {email}")],
                estimated_time=5,
            )

        try:
            existing = self.client.get_user(email)
        except ProvisioningError as e:
            logger.debug("zoom: user lookup failed, assuming absent: %s", e)
            existing = None

        if existing:
            actions = [Action(type="update", resource="user", required=True,
                              details=f"Update Zoom user {email} ({cfg.license_type})")]
        else:
            actions = [Action(type="create", resource="user", required=True,
                              details=f"Create Zoom user {email} ({cfg.license_type})")]
        for add_on in cfg.add_ons:
            actions.append(Action(type="assign", resource="add_on",
                                  details=f"Enable {add_on} for {email}"))
        return Plan(provider=self.name, actions=actions, estimated_time=10 + 2 * len(cfg.add_ons))

    # ── Apply ───────────────────────────────────────────────────

    def apply(self, validated: ValidatedInput) -> Result:
        try:
            cfg: ZoomConfig = self.load_config(validated)
        except ProvisioningError as e:
            return Result.error(self.name, e.describe())

        if cfg.deactivating:
            return self._deactivate(cfg)
        return self._provision(cfg)

    def _ensure_user(self, cfg: ZoomConfig) -> tuple[dict[str, Any], bool]:
        email = cfg.work_email
        user_type = self.catalog.zoom_license_types[cfg.license_type]
        existing = self.client.get_user(email)

        if existing:
            self.client.update_user(existing["id"], {
                "first_name": cfg.given_name,
                "last_name": cfg.family_name,
                "type": user_type,
            })
            if existing.get("status") == "inactive":
                self.client.set_status(existing["id"], "activate")
                existing = {**existing, "status": "active"}
            logger.info("zoom: updated %s", email)
            return existing, False

        user = self.client.create_user({
            "email": email,
            "type": user_type,
            "first_name": cfg.given_name,
            "last_name": cfg.family_name,
            "display_name": cfg.full_name,
        })
        logger.info("zoom: created %s (activation pending)", email)
        return {"status": "pending", **user}, True

    def _provision(self, cfg: ZoomConfig) -> Result:
        outcome = ApplyOutcome(self.name)
        try:
            user, created = self._ensure_user(cfg)
        except Exception as e:
            return outcome.fail("user", e)

        user_id = str(user.get("id") or "")
        outcome.external_ids["zoomUserId"] = user_id
        outcome.external_links["profile"] = self._profile_link(user_id)
        outcome.metadata.update({
            "email": cfg.work_email,
            "licenseType": cfg.license_type,
            "addOns": list(cfg.add_ons),
            "created": created,
        })
        if user.get("status") == "pending":
            outcome.metadata["activation"] = "pending"

        outcome.run_all([
            Step(f"add-on {add_on}",
                 partial(self.client.update_settings, user_id, ADD_ON_SETTINGS[add_on]))
            for add_on in cfg.add_ons
        ], concurrent=True)
        return outcome.to_result()

    def _deactivate(self, cfg: ZoomConfig) -> Result:
        outcome = ApplyOutcome(self.name)
        email = cfg.work_email
        try:
            user = self.client.get_user(email)
            if user is None:
                raise NotFoundError(f"No Zoom user {email}", provider=self.name)
            if user.get("status") != "inactive":
                self.client.set_status(user["id"], "deactivate")
        except Exception as e:
            return outcome.fail("user", e)

        logger.info("zoom: deactivated %s", email)
        user_id = str(user["id"])
        outcome.external_ids["zoomUserId"] = user_id
        outcome.external_links["profile"] = self._profile_link(user_id)
        outcome.metadata.update({"email": email, "status": "inactive"})
        return outcome.to_result()
