"""
Google Workspace adapter — Admin SDK Directory + Enterprise License Manager.

Accounts are keyed by primary email. Provisioning creates or updates the
user, then assigns the Workspace license and group memberships as
independent steps. Deactivation suspends the user and releases the
license; nothing is ever deleted.

Auth: service-account JWT with domain-wide delegation to an admin
subject (see ``accountctl.adapters.auth.GoogleServiceAccount``).
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
from accountctl.core.errors import ConflictError, NotFoundError, ProvisioningError
from accountctl.core.models.configs import GOOGLE_WORKSPACE, GoogleWorkspaceConfig
from accountctl.core.models.provisioning import Action, Plan, Result, ValidatedInput
from accountctl.core.security.passwords import generate_password

logger = logging.getLogger(__name__)

DIRECTORY_URL = "https://admin.googleapis.com/admin/directory/v1"
LICENSING_URL = "https://licensing.googleapis.com/apps/licensing/v1"

SCOPES = [
    "https://www.googleapis.com/auth/admin.directory.user",
    "https://www.googleapis.com/auth/admin.directory.group.member",
    "https://www.googleapis.com/auth/apps.licensing",
]


def _q(value: str) -> str:
    return urllib.parse.quote(value, safe="@")


class GoogleDirectoryClient:
    """Thin wrapper over the Directory and Licensing REST endpoints."""

    def __init__(self, http: HttpClient, *, licensing_url: str = LICENSING_URL):
        self.http = http
        self.licensing_url = licensing_url.rstrip("/")

    def get_user(self, email: str) -> dict[str, Any] | None:
        try:
            return self.http.get(f"users/{_q(email)}")
        except NotFoundError:
            return None

    def insert_user(self, body: dict[str, Any]) -> dict[str, Any]:
        return self.http.post("users", json_body=body)

    def update_user(self, user_key: str, body: dict[str, Any]) -> dict[str, Any]:
        return self.http.put(f"users/{_q(user_key)}", json_body=body) or {}

    def _license_path(self, product_id: str, sku_id: str) -> str:
        return f"{self.licensing_url}/product/{_q(product_id)}/sku/{_q(sku_id)}/user"

    def assign_license(self, product_id: str, sku_id: str, email: str) -> dict[str, Any]:
        return self.http.post(
            self._license_path(product_id, sku_id), json_body={"userId": email}
        ) or {}

    def release_license(self, product_id: str, sku_id: str, email: str) -> None:
        self.http.delete(f"{self._license_path(product_id, sku_id)}/{_q(email)}")

    def add_group_member(self, group: str, email: str) -> dict[str, Any]:
        return self.http.post(
            f"groups/{_q(group)}/members", json_body={"email": email, "role": "MEMBER"}
        ) or {}


class GoogleWorkspaceProvisioner(Provisioner):
    """Provision Google Workspace users.

    The client is injected; see ``accountctl.adapters.factory`` for the
    production wiring.
    """

    config_model = GoogleWorkspaceConfig
    display_name = "Google Workspace"
    description = "Gmail, Drive, Calendar and the Workspace directory"

    def __init__(
        self,
        client: GoogleDirectoryClient,
        *,
        catalog: Catalog | None = None,
        admin_console_url: str = "https://admin.google.com/ac/users",
    ):
        self.client = client
        self.catalog = catalog or Catalog()
        self.admin_console_url = admin_console_url.rstrip("/")

    @property
    def name(self) -> str:
        return GOOGLE_WORKSPACE

    def check_config(self, config: GoogleWorkspaceConfig) -> list[str]:
        if config.deactivating:
            return []
        if self.catalog.google_license(config.license_sku) is None:
            known = ", ".join(sorted(self.catalog.google_licenses))
            return [f"licenseSku: unknown SKU {config.license_sku!r} (known: {known})"]
        return []

    # ── Plan ────────────────────────────────────────────────────

    def _lookup(self, email: str) -> dict[str, Any] | None:
        try:
            return self.client.get_user(email)
        except ProvisioningError as e:
            logger.debug("google-workspace: user lookup failed, assuming absent: %s", e)
            return None

    def plan(self, validated: ValidatedInput) -> Plan:
        cfg: GoogleWorkspaceConfig = self.load_config(validated)
        email = cfg.work_email

        if cfg.deactivating:
            actions = [
                Action(type="delete", resource="user",
                       details=f"Suspend {email}", required=True),
                Action(type="delete", resource="license",
                       details=f"Release {cfg.license_sku} from {email}"),
            ]
            return Plan(provider=self.name, actions=actions, estimated_time=5)

        existing = self._lookup(email)
        if existing:
            primary = Action(
                type="update", resource="user", required=True,
                details=f"Update {email} (org unit {cfg.primary_org_unit})",
            )
        else:
            primary = Action(
                type="create", resource="user", required=True,
                details=f"Create {email} in {cfg.primary_org_unit}",
            )

        actions = [
            primary,
            Action(type="assign", resource="license",
                   details=f"Assign {cfg.license_sku} to {email}"),
        ]
        for group in cfg.groups:
            actions.append(
                Action(type="assign", resource="group", details=f"Add {email} to {group}")
            )
        return Plan(
            provider=self.name,
            actions=actions,
            estimated_time=5 + 2 * len(actions),
        )

    # ── Apply ───────────────────────────────────────────────────

    def apply(self, validated: ValidatedInput) -> Result:
        try:
            cfg: GoogleWorkspaceConfig = self.load_config(validated)
        except ProvisioningError as e:
            return Result.error(self.name, e.describe())

        if cfg.deactivating:
            return self._deactivate(cfg)
        return self._provision(cfg)

    def _user_body(self, cfg: GoogleWorkspaceConfig) -> dict[str, Any]:
        body: dict[str, Any] = {
            "name": {"givenName": cfg.given_name, "familyName": cfg.family_name or cfg.given_name},
            "orgUnitPath": cfg.primary_org_unit,
        }
        if cfg.department or cfg.job_title:
            body["organizations"] = [{
                "department": cfg.department or "",
                "title": cfg.job_title or "",
                "primary": True,
            }]
        if cfg.manager_email:
            body["relations"] = [{"type": "manager", "value": cfg.manager_email}]
        return body

    def _ensure_user(self, cfg: GoogleWorkspaceConfig) -> tuple[dict[str, Any], bool, str | None]:
        """Find-then-create-or-update. Returns (user, created, password)."""
        email = cfg.work_email
        existing = self.client.get_user(email)

        if existing is None:
            password = (
                cfg.custom_password if cfg.password_mode == "custom" else generate_password()
            )
            body = {
                "primaryEmail": email,
                "password": password,
                "changePasswordAtNextLogin": cfg.change_password_at_next_login,
                **self._user_body(cfg),
            }
            try:
                user = self.client.insert_user(body)
                logger.info("google-workspace: created %s", email)
                return user, True, password
            except ConflictError:
                # Created concurrently since our read; fall through to update
                existing = self.client.get_user(email)
                if existing is None:
                    raise

        body = {**self._user_body(cfg), "suspended": False}
        updated = self.client.update_user(existing.get("id") or email, body)
        logger.info("google-workspace: updated %s", email)
        return {**existing, **updated}, False, None

    def _provision(self, cfg: GoogleWorkspaceConfig) -> Result:
        outcome = ApplyOutcome(self.name)
        try:
            user, created, password = self._ensure_user(cfg)
        except Exception as e:
            return outcome.fail("user", e)

        email = cfg.work_email
        user_id = str(user.get("id") or "")
        outcome.external_ids["userId"] = user_id
        outcome.external_links["adminConsole"] = f"{self.admin_console_url}/{user_id}"
        outcome.metadata.update({
            "email": email,
            "orgUnit": cfg.primary_org_unit,
            "license": cfg.license_sku,
            "created": created,
        })
        if created and cfg.password_mode == "auto":
            outcome.metadata["initialPassword"] = password
        outcome.raw["user"] = {k: v for k, v in user.items() if k != "password"}

        license_info = self.catalog.google_license(cfg.license_sku)
        product_id = license_info.product_id if license_info else "Google-Apps"
        steps = [Step("license", partial(self._assign_license, product_id, cfg.license_sku, email))]
        steps.extend(
            Step(f"group {group}", partial(self._add_to_group, group, email))
            for group in cfg.groups
        )
        outcome.run_all(steps, concurrent=True)
        return outcome.to_result()

    def _assign_license(self, product_id: str, sku_id: str, email: str) -> None:
        try:
            self.client.assign_license(product_id, sku_id, email)
        except ConflictError:
            logger.debug("google-workspace: %s already holds %s", email, sku_id)

    def _add_to_group(self, group: str, email: str) -> None:
        try:
            self.client.add_group_member(group, email)
        except ConflictError:
            logger.debug("google-workspace: %s already in %s", email, group)

    def _deactivate(self, cfg: GoogleWorkspaceConfig) -> Result:
        outcome = ApplyOutcome(self.name)
        email = cfg.work_email
        try:
            existing = self.client.get_user(email)
            if existing is None:
                raise NotFoundError(f"No Google Workspace user {email}", provider=self.name)
            user_id = str(existing.get("id") or "")
            self.client.update_user(user_id or email, {"suspended": True})
        except Exception as e:
            return outcome.fail("user", e)

        logger.info("google-workspace: suspended %s", email)
        outcome.external_ids["userId"] = user_id
        outcome.external_links["adminConsole"] = f"{self.admin_console_url}/{user_id}"
        outcome.metadata.update({"email": email, "suspended": True})

        license_info = self.catalog.google_license(cfg.license_sku)
        product_id = license_info.product_id if license_info else "Google-Apps"
        outcome.run(Step(
            "license",
            partial(self._release_license, product_id, cfg.license_sku, email),
            advisory=True,
        ))
        return outcome.to_result()

    def _release_license(self, product_id: str, sku_id: str, email: str) -> None:
        try:
            self.client.release_license(product_id, sku_id, email)
        except NotFoundError:
            logger.debug("google-workspace: %s held no %s license", email, sku_id)
