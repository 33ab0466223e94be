"""
Jira adapter — Jira Cloud platform REST API v3.

Product access in Jira Cloud is group based: each product has a
"product access" group, listed in the catalog. Provisioning creates
the user with its products (or re-grants them through those groups)
and adds the requested groups. Deactivation removes the user from
every group, which revokes all product access.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Any

from accountctl.adapters.base import Provisioner
from accountctl.adapters.http import HttpClient
from accountctl.adapters.outcome import ApplyOutcome, Step
from accountctl.core.config.catalog import Catalog
from accountctl.core.errors import NotFoundError, ProvisioningError, VendorError
from accountctl.core.models.configs import JIRA, JiraConfig
from accountctl.core.models.provisioning import Action, Plan, Result, ValidatedInput

logger = logging.getLogger(__name__)

API = "rest/api/3"


def site_url(site: str) -> str:
    """``acme`` or ``acme.atlassian.net`` → ``https://acme.atlassian.net``."""
    site = site.strip().rstrip("/")
    if site.startswith(("http://", "https://")):
        return site
    if "." not in site:
        site = f"{site}.atlassian.net"
    return f"https://{site}"


class JiraClient:
    """User and group endpoints of one Jira Cloud site."""

    def __init__(self, http: HttpClient):
        self.http = http

    @property
    def site(self) -> str:
        return self.http.base_url

    def for_site(self, site: str) -> JiraClient:
        return JiraClient(self.http.rebased(site_url(site)))

    def find_user(self, email: str) -> dict[str, Any] | None:
        users = self.http.get(f"{API}/user/search", params={"query": email}) or []
        for user in users:
            if str(user.get("emailAddress", "")).lower() == email:
                return user
        # Email may be hidden by the user's privacy settings; an account
        # showing a different address is never a match
        people = [u for u in users
                  if u.get("accountType") == "atlassian" and not u.get("emailAddress")]
        return people[0] if len(people) == 1 else None

    def create_user(self, email: str, display_name: str | None,
                    products: list[str]) -> dict[str, Any]:
        body: dict[str, Any] = {"emailAddress": email, "products": products}
        if display_name:
            body["displayName"] = display_name
        return self.http.post(f"{API}/user", json_body=body)

    def user_groups(self, account_id: str) -> list[dict[str, Any]]:
        return self.http.get(f"{API}/user/groups", params={"accountId": account_id}) or []

    def add_to_group(self, group: str, account_id: str) -> None:
        self.http.post(f"{API}/group/user", params={"groupname": group},
                       json_body={"accountId": account_id})

    def remove_from_group(self, group: str, account_id: str) -> None:
        self.http.delete(f"{API}/group/user",
                         params={"groupname": group, "accountId": account_id})


def _already_member(exc: VendorError) -> bool:
    return exc.status_code in (400, 409) and "already a member" in str(exc).lower()


class JiraProvisioner(Provisioner):
    """Provision Atlassian accounts and Jira product access."""

    config_model = JiraConfig
    display_name = "Jira"
    description = "Atlassian account, Jira product access and groups"

    def __init__(self, client: JiraClient, *, catalog: Catalog | None = None):
        self.client = client
        self.catalog = catalog or Catalog()

    @property
    def name(self) -> str:
        return JIRA

    def check_config(self, config: JiraConfig) -> list[str]:
        unknown = [p for p in config.products if self.catalog.jira_group_for(p) is None]
        if unknown and not config.deactivating:
            return [f"products: unknown product(s) {', '.join(unknown)}"]
        return []

    def _client_for(self, cfg: JiraConfig) -> JiraClient:
        return self.client.for_site(cfg.site) if cfg.site else self.client

    # ── Plan ────────────────────────────────────────────────────

    def plan(self, validated: ValidatedInput) -> Plan:
        cfg: JiraConfig = self.load_config(validated)
        client = self._client_for(cfg)
        email = cfg.work_email

        try:
            existing = client.find_user(email)
        except ProvisioningError as e:
            logger.debug("jira: user lookup failed, assuming absent: %s", e)
            existing = None

        if cfg.deactivating:
            return self._plan_deactivation(client, email, existing)

        products = ", ".join(cfg.products)
        if existing:
            actions = [Action(type="update", resource="user", required=True,
                              details=f"Re-grant {products} to {email}")]
        else:
            actions = [Action(type="create", resource="user", required=True,
                              details=f"Create Atlassian account {email} with {products}")]
        for group in cfg.groups:
            actions.append(Action(type="assign", resource="group",
                                  details=f"Add {email} to group {group}"))
        return Plan(provider=self.name, actions=actions, estimated_time=10 + 2 * len(actions))

    def _plan_deactivation(self, client: JiraClient, email: str,
                           existing: dict[str, Any] | None) -> Plan:
        groups: list[str] = []
        if existing:
            try:
                groups = [g["name"] for g in client.user_groups(existing["accountId"])]
            except ProvisioningError as e:
                logger.debug("jira: group lookup failed: %s", e)
        if not groups:
            actions = [Action(type="delete", resource="group_membership", required=True,
                              details=f"Remove {email} from all groups")]
        else:
            actions = [
                Action(type="delete", resource="group_membership",
                       details=f"Remove {email} from {group}")
                for group in groups
            ]
        return Plan(provider=self.name, actions=actions, estimated_time=5 + len(actions))

    # ── Apply ───────────────────────────────────────────────────

    def apply(self, validated: ValidatedInput) -> Result:
        try:
            cfg: JiraConfig = self.load_config(validated)
        except ProvisioningError as e:
            return Result.error(self.name, e.describe())

        client = self._client_for(cfg)
        if cfg.deactivating:
            return self._deactivate(client, cfg)
        return self._provision(client, cfg)

    def _provision(self, client: JiraClient, cfg: JiraConfig) -> Result:
        outcome = ApplyOutcome(self.name)
        email = cfg.work_email
        try:
            existing = client.find_user(email)
            if existing:
                user, created = existing, False
            else:
                user = client.create_user(email, cfg.full_name, list(cfg.products))
                created = True
                logger.info("jira: created %s", email)
        except Exception as e:
            return outcome.fail("user", e)

        account_id = str(user.get("accountId") or "")
        outcome.external_ids["accountId"] = account_id
        outcome.external_links["profile"] = f"{client.site}/jira/people/{account_id}"
        outcome.metadata.update({
            "email": email,
            "products": list(cfg.products),
            "created": created,
        })

        steps: list[Step] = []
        if not created:
            # Existing accounts get product access through the access groups
            for product in cfg.products:
                group = self.catalog.jira_group_for(product)
                if group:
                    steps.append(Step(f"product {product}",
                                      partial(self._add_to_group, client, group, account_id)))
        steps.extend(
            Step(f"group {group}", partial(self._add_to_group, client, group, account_id))
            for group in cfg.groups
        )
        outcome.run_all(steps, concurrent=True)
        return outcome.to_result()

    def _add_to_group(self, client: JiraClient, group: str, account_id: str) -> None:
        try:
            client.add_to_group(group, account_id)
        except VendorError as e:
            if not _already_member(e):
                raise

    def _deactivate(self, client: JiraClient, cfg: JiraConfig) -> Result:
        outcome = ApplyOutcome(self.name)
        email = cfg.work_email
        try:
            user = client.find_user(email)
            if user is None:
                raise NotFoundError(f"No Atlassian account {email}", provider=self.name)
            account_id = str(user["accountId"])
            groups = [g["name"] for g in client.user_groups(account_id)]
        except Exception as e:
            return outcome.fail("user", e)

        outcome.external_ids["accountId"] = account_id
        outcome.external_links["profile"] = f"{client.site}/jira/people/{account_id}"
        outcome.metadata.update({"email": email, "groupsRemoved": groups})

        outcome.run_all([
            Step(f"group {group}", partial(self._remove_from_group, client, group, account_id))
            for group in groups
        ])
        logger.info("jira: removed %s from %d group(s)", email, len(groups))
        return outcome.to_result()

    def _remove_from_group(self, client: JiraClient, group: str, account_id: str) -> None:
        try:
            client.remove_from_group(group, account_id)
        except NotFoundError:
            logger.debug("jira: %s no longer in %s", account_id, group)
