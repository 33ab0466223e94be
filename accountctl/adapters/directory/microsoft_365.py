"""
Microsoft 365 adapter — Microsoft Graph v1.0.

Users are found by mail or user principal name. Licensing is
best-effort: an SKU the tenant does not subscribe to, or one with no
free seats, is reported as a warning and the remaining SKUs are still
assigned. A failed ``assignLicense`` call is an error.

Auth: app-only token from an MSAL confidential client
(``accountctl.adapters.auth.GraphAppCredentials``).
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Any

from accountctl.adapters.base import Provisioner
from accountctl.adapters.http import HttpClient
from accountctl.adapters.outcome import ApplyOutcome, Step, StepWarning
from accountctl.core.config.catalog import Catalog
from accountctl.core.errors import ConflictError, NotFoundError, ProvisioningError, VendorError
from accountctl.core.models.configs import MICROSOFT_365, Microsoft365Config
from accountctl.core.models.provisioning import Action, Plan, Result, ValidatedInput
from accountctl.core.security.passwords import generate_password

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

PORTAL_USER_URL = "https://portal.office.com/adminportal/home#/users/:/UserDetails"
OUTLOOK_URL = "https://outlook.office.com/"
FIRST_LOGIN_URL = "https://portal.office.com/"

_USER_FIELDS = "id,userPrincipalName,mail,displayName,accountEnabled,assignedLicenses"


def _odata_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class GraphClient:
    """The handful of Graph endpoints provisioning needs."""

    def __init__(self, http: HttpClient):
        self.http = http

    def find_user(self, email: str, upn: str | None = None) -> dict[str, Any] | None:
        clauses = [f"mail eq {_odata_literal(email)}",
                   f"userPrincipalName eq {_odata_literal(upn or email)}"]
        body = self.http.get(
            "users", params={"$filter": " or ".join(clauses), "$select": _USER_FIELDS}
        ) or {}
        users = body.get("value") or []
        return users[0] if users else None

    def create_user(self, body: dict[str, Any]) -> dict[str, Any]:
        return self.http.post("users", json_body=body)

    def update_user(self, user_id: str, body: dict[str, Any]) -> None:
        self.http.patch(f"users/{user_id}", json_body=body)

    def subscribed_skus(self) -> list[dict[str, Any]]:
        """All subscribed SKUs, following ``@odata.nextLink``."""
        skus: list[dict[str, Any]] = []
        page = self.http.get("subscribedSkus") or {}
        while True:
            skus.extend(page.get("value") or [])
            next_link = page.get("@odata.nextLink")
            if not next_link:
                return skus
            page = self.http.get(next_link) or {}

    def assign_license(self, user_id: str, add: list[dict[str, Any]],
                       remove: list[str]) -> dict[str, Any]:
        return self.http.post(
            f"users/{user_id}/assignLicense",
            json_body={"addLicenses": add, "removeLicenses": remove},
        ) or {}

    def add_group_member(self, group_id: str, user_id: str) -> None:
        self.http.post(
            f"groups/{group_id}/members/$ref",
            json_body={"@odata.id": f"{GRAPH_URL}/directoryObjects/{user_id}"},
        )

    def set_manager(self, user_id: str, manager_id: str) -> None:
        self.http.put(
            f"users/{user_id}/manager/$ref",
            json_body={"@odata.id": f"{GRAPH_URL}/users/{manager_id}"},
        )

    def revoke_sessions(self, user_id: str) -> None:
        self.http.post(f"users/{user_id}/revokeSignInSessions")


def _already_member(exc: VendorError) -> bool:
    return isinstance(exc, ConflictError) or (
        exc.status_code == 400 and "already exist" in str(exc)
    )


class Microsoft365Provisioner(Provisioner):
    """Provision Microsoft 365 (Entra ID) users and licenses."""

    config_model = Microsoft365Config
    display_name = "Microsoft 365"
    description = "Outlook, Teams, OneDrive and Office licenses"

    def __init__(
        self,
        client: GraphClient,
        *,
        catalog: Catalog | None = None,
        upn_domains: dict[str, str] | None = None,
    ):
        self.client = client
        self.catalog = catalog or Catalog()
        self.upn_domains = dict(upn_domains or {})

    @property
    def name(self) -> str:
        return MICROSOFT_365

    def check_config(self, config: Microsoft365Config) -> list[str]:
        locations = self.catalog.usage_locations
        if config.usage_location not in locations:
            return [f"usageLocation: must be one of {', '.join(locations)}"]
        return []

    def user_principal_name(self, email: str) -> str:
        """Work email with its domain rewritten per ``upn_domains``."""
        local, _, domain = email.partition("@")
        target = self.upn_domains.get(domain.lower())
        return f"{local}@{target}" if target else email

    def _group_id(self, group: str) -> str:
        for entry in self.catalog.microsoft_groups:
            if group in (entry.id, entry.name):
                return entry.id
        return group

    # ── Plan ────────────────────────────────────────────────────

    def plan(self, validated: ValidatedInput) -> Plan:
        cfg: Microsoft365Config = self.load_config(validated)
        email = cfg.work_email
        upn = self.user_principal_name(email)

        if cfg.deactivating:
            return Plan(
                provider=self.name,
                actions=[
                    Action(type="update", resource="user", required=True,
                           details=f"Disable sign-in for {upn}"),
                    Action(type="delete", resource="sessions",
                           details=f"Revoke sign-in sessions of {upn}"),
                    Action(type="delete", resource="license",
                           details=f"Remove assigned licenses from {upn}"),
                ],
                estimated_time=20,
            )

        try:
            existing = self.client.find_user(email, upn)
        except ProvisioningError as e:
            logger.debug("microsoft-365: user lookup failed, assuming absent: %s", e)
            existing = None

        if existing:
            actions = [Action(type="update", resource="user", required=True,
                              details=f"Update existing Microsoft 365 user {upn}")]
        else:
            actions = [Action(type="create", resource="user", required=True,
                              details=f"Create Microsoft 365 user {upn} ({cfg.usage_location})")]

        for sku in cfg.license_skus:
            actions.append(Action(type="assign", resource="license", required=True,
                                  details=f"Assign license {sku} to {upn}"))
        if cfg.service_plans:
            actions.append(Action(
                type="assign", resource="service_plans",
                details=f"Enable service plans {', '.join(cfg.service_plans)} for {upn}",
            ))
        for group in cfg.groups:
            actions.append(Action(type="assign", resource="group",
                                  details=f"Add {upn} to group {group}"))
        if cfg.manager_email:
            actions.append(Action(type="assign", resource="manager",
                                  details=f"Set manager of {upn} to {cfg.manager_email}"))

        return Plan(provider=self.name, actions=actions, estimated_time=45)

    # ── Apply ───────────────────────────────────────────────────

    def apply(self, validated: ValidatedInput) -> Result:
        try:
            cfg: Microsoft365Config = self.load_config(validated)
        except ProvisioningError as e:
            return Result.error(self.name, e.describe())

        if cfg.deactivating:
            return self._deactivate(cfg)
        return self._provision(cfg)

    def _profile(self, cfg: Microsoft365Config) -> dict[str, Any]:
        body: dict[str, Any] = {
            "displayName": cfg.full_name,
            "givenName": cfg.given_name,
            "surname": cfg.family_name,
            "usageLocation": cfg.usage_location,
        }
        for key, value in (("department", cfg.department),
                           ("jobTitle", cfg.job_title),
                           ("officeLocation", cfg.office_location)):
            if value:
                body[key] = value
        return body

    def _ensure_user(self, cfg: Microsoft365Config) -> tuple[dict[str, Any], bool, str | None]:
        email = cfg.work_email
        upn = self.user_principal_name(email)
        existing = self.client.find_user(email, upn)

        if existing:
            self.client.update_user(existing["id"], {**self._profile(cfg), "accountEnabled": True})
            logger.info("microsoft-365: updated %s", upn)
            return existing, False, None

        password = cfg.temp_password or generate_password()
        body = {
            "accountEnabled": True,
            "mailNickname": email.split("@", 1)[0],
            "userPrincipalName": upn,
            "mail": email,
            "passwordProfile": {
                "forceChangePasswordNextSignIn": cfg.require_password_change,
                "password": password,
            },
            **self._profile(cfg),
        }
        user = self.client.create_user(body)
        logger.info("microsoft-365: created %s", upn)
        return user, True, password

    def _provision(self, cfg: Microsoft365Config) -> Result:
        outcome = ApplyOutcome(self.name)
        try:
            user, created, password = self._ensure_user(cfg)
        except Exception as e:
            return outcome.fail("user", e)

        user_id = str(user.get("id") or "")
        upn = str(user.get("userPrincipalName") or self.user_principal_name(cfg.work_email))
        outcome.external_ids.update({"userId": user_id, "userPrincipalName": upn})
        outcome.external_links.update({
            "profile": f"{PORTAL_USER_URL}/{user_id}",
            "outlook": OUTLOOK_URL,
        })
        if created:
            outcome.external_links["firstLogin"] = FIRST_LOGIN_URL
        outcome.metadata.update({
            "email": cfg.work_email,
            "userPrincipalName": upn,
            "usageLocation": cfg.usage_location,
            "licenses": list(cfg.license_skus),
            "created": created,
        })
        if created:
            outcome.metadata["initialPassword"] = password

        # Seat and SKU shortfalls are collected here, not raised
        license_notes: list[str] = []
        licensed: list[dict[str, Any]] | None = None
        if cfg.license_skus:
            licensed = outcome.run(Step(
                "licenses",
                partial(self._assign_licenses, user, cfg, license_notes),
                required=True,
            ))
            outcome.warnings.extend(license_notes)
        if cfg.service_plans:
            if cfg.license_skus and licensed is None:
                outcome.warnings.append("service plans: skipped, licenses were not assigned")
            else:
                outcome.run(Step("service plans",
                                 partial(self._enable_service_plans, user, cfg, licensed)))

        steps = [
            Step(f"group {group}", partial(self._add_to_group, self._group_id(group), user_id))
            for group in cfg.groups
        ]
        if cfg.manager_email:
            steps.append(Step("manager", partial(self._set_manager, user_id, cfg.manager_email)))

        outcome.run_all(steps, concurrent=True)
        return outcome.to_result()

    def _match_sku(self, requested: str, skus: list[dict[str, Any]]) -> dict[str, Any] | None:
        keys = {requested.lower()}
        known = self.catalog.microsoft_license(requested)
        if known:
            keys.update({known.sku_id.lower(), known.sku_part_number.lower()})
        for sku in skus:
            if str(sku.get("skuId", "")).lower() in keys:
                return sku
            if str(sku.get("skuPartNumber", "")).lower() in keys:
                return sku
        return None

    def _assign_licenses(self, user: dict[str, Any], cfg: Microsoft365Config,
                         notes: list[str]) -> list[dict[str, Any]]:
        """Assign requested SKUs the user lacks; returns every requested SKU now held."""
        held = {lic.get("skuId") for lic in user.get("assignedLicenses") or []}
        subscribed = self.client.subscribed_skus()

        licensed: list[dict[str, Any]] = []
        to_add: list[dict[str, Any]] = []
        for requested in cfg.license_skus:
            sku = self._match_sku(requested, subscribed)
            if sku is None:
                notes.append(f"licenses: SKU {requested} is not subscribed in this tenant")
                continue
            if sku["skuId"] in held:
                licensed.append(sku)
                continue
            enabled = int((sku.get("prepaidUnits") or {}).get("enabled") or 0)
            if enabled - int(sku.get("consumedUnits") or 0) <= 0:
                notes.append(f"licenses: no available seats for {requested}")
                continue
            licensed.append(sku)
            to_add.append({"skuId": sku["skuId"], "disabledPlans": []})

        if to_add:
            self.client.assign_license(user["id"], to_add, [])
            logger.info("microsoft-365: assigned %d license(s) to %s",
                        len(to_add), user.get("userPrincipalName", user["id"]))
        return licensed

    def _enable_service_plans(self, user: dict[str, Any], cfg: Microsoft365Config,
                              licensed: list[dict[str, Any]] | None) -> list[str]:
        """Leave only the requested service plans enabled on the user's SKUs.

        ``licensed`` is None when no SKUs were requested; the plans then
        apply to every SKU the user already holds.
        """
        if licensed is None:
            held = {lic.get("skuId") for lic in user.get("assignedLicenses") or []}
            licensed = [s for s in self.client.subscribed_skus() if s.get("skuId") in held]

        wanted = {p.lower() for p in cfg.service_plans}
        offered: set[str] = set()
        entries: list[dict[str, Any]] = []
        for sku in licensed:
            plans = [p for p in sku.get("servicePlans") or []
                     if p.get("appliesTo", "User") == "User"]
            names = {str(p.get("servicePlanName", "")).lower() for p in plans}
            if not names & wanted:
                continue
            offered |= names
            entries.append({
                "skuId": sku["skuId"],
                "disabledPlans": [p["servicePlanId"] for p in plans
                                  if str(p.get("servicePlanName", "")).lower() not in wanted],
            })

        if entries:
            self.client.assign_license(user["id"], entries, [])
            logger.info("microsoft-365: set service plans on %d license(s) of %s",
                        len(entries), user.get("userPrincipalName", user["id"]))
        unknown = [p for p in cfg.service_plans if p.lower() not in offered]
        if unknown:
            raise StepWarning(f"no assigned license offers {', '.join(unknown)}")
        return [entry["skuId"] for entry in entries]

    def _add_to_group(self, group_id: str, user_id: str) -> None:
        try:
            self.client.add_group_member(group_id, user_id)
        except VendorError as e:
            if not _already_member(e):
                raise

    def _set_manager(self, user_id: str, manager_email: str) -> None:
        manager = self.client.find_user(manager_email, self.user_principal_name(manager_email))
        if manager is None:
            raise NotFoundError(f"Manager {manager_email} not found", provider=self.name)
        self.client.set_manager(user_id, manager["id"])

    def _deactivate(self, cfg: Microsoft365Config) -> Result:
        outcome = ApplyOutcome(self.name)
        email = cfg.work_email
        upn = self.user_principal_name(email)
        try:
            user = self.client.find_user(email, upn)
            if user is None:
                raise NotFoundError(f"No Microsoft 365 user {upn}", provider=self.name)
            self.client.update_user(user["id"], {"accountEnabled": False})
        except Exception as e:
            return outcome.fail("user", e)

        logger.info("microsoft-365: disabled %s", upn)
        user_id = str(user["id"])
        outcome.external_ids.update({
            "userId": user_id,
            "userPrincipalName": str(user.get("userPrincipalName") or upn),
        })
        outcome.external_links["profile"] = f"{PORTAL_USER_URL}/{user_id}"
        outcome.metadata.update({"email": email, "accountEnabled": False})

        held = [lic["skuId"] for lic in user.get("assignedLicenses") or [] if lic.get("skuId")]
        steps = [Step("sessions", partial(self.client.revoke_sessions, user_id), advisory=True)]
        if held:
            steps.append(Step(
                "licenses",
                partial(self.client.assign_license, user_id, [], held),
                advisory=True,
            ))
        outcome.run_all(steps)
        return outcome.to_result()
