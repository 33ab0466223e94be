"""
Slack adapter — SCIM v2 for accounts, Web API for channels and groups.

The user itself is the only required resource. Channel invites and
user-group additions are advisory: a missing channel or group is a
warning, and so is any failure to add the user to one.
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Any

from accountctl.adapters.base import Provisioner
from accountctl.adapters.http import HttpClient
from accountctl.adapters.outcome import ApplyOutcome, Step, StepWarning
from accountctl.core.errors import AuthError, NotFoundError, ProvisioningError, VendorError
from accountctl.core.models.configs import SLACK, SlackConfig
from accountctl.core.models.provisioning import Action, Plan, Result, ValidatedInput

logger = logging.getLogger(__name__)

SCIM_URL = "https://api.slack.com/scim/v2"
WEB_API_URL = "https://slack.com/api"

SCIM_USER_SCHEMA = "urn:ietf:params:scim:schemas:core:2.0:User"
SCIM_PATCH_SCHEMA = "urn:ietf:params:scim:api:messages:2.0:PatchOp"

AUTH_ERROR_CODES = frozenset({"invalid_auth", "not_authed", "token_revoked", "account_inactive"})

PAGE_LIMIT = 200


def _scim_string(value: str) -> str:
    """A SCIM filter string literal (JSON string escaping)."""
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class SlackClient:
    """SCIM + Web API calls, with Web API ``ok: false`` mapped to errors."""

    def __init__(self, scim: HttpClient, web: HttpClient):
        self.scim = scim
        self.web = web

    # ── Web API ─────────────────────────────────────────────────

    def call(self, method: str, *, params: dict[str, Any] | None = None,
             body: dict[str, Any] | None = None) -> dict[str, Any]:
        if body is not None:
            data = self.web.post(method, json_body=body)
        else:
            data = self.web.get(method, params=params)
        data = data or {}
        if data.get("ok"):
            return data

        code = str(data.get("error") or "unknown_error")
        if code in AUTH_ERROR_CODES:
            raise AuthError(f"{method}: {code}", provider=SLACK)
        raise VendorError(f"{method}: {code}", provider=SLACK, payload=data)

    def list_channels(self) -> list[dict[str, Any]]:
        """Every public channel, following the response cursor."""
        channels: list[dict[str, Any]] = []
        cursor = None
        while True:
            page = self.call("conversations.list", params={
                "types": "public_channel",
                "exclude_archived": "true",
                "limit": PAGE_LIMIT,
                "cursor": cursor,
            })
            channels.extend(page.get("channels") or [])
            cursor = (page.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                return channels

    def invite(self, channel_id: str, user_id: str) -> None:
        self.call("conversations.invite", body={"channel": channel_id, "users": user_id})

    def list_usergroups(self) -> list[dict[str, Any]]:
        return self.call("usergroups.list", params={"include_users": "true"}).get("usergroups") or []

    def set_usergroup_users(self, group_id: str, user_ids: list[str]) -> None:
        self.call("usergroups.users.update",
                  body={"usergroup": group_id, "users": ",".join(user_ids)})

    # ── SCIM ────────────────────────────────────────────────────

    def find_user(self, email: str) -> dict[str, Any] | None:
        data = self.scim.get("Users", params={"filter": f"email eq {_scim_string(email)}"}) or {}
        resources = data.get("Resources") or []
        return resources[0] if resources else None

    def create_user(self, body: dict[str, Any]) -> dict[str, Any]:
        return self.scim.post("Users", json_body=body)

    def patch_user(self, user_id: str, operations: list[dict[str, Any]]) -> dict[str, Any]:
        return self.scim.patch(
            f"Users/{user_id}",
            json_body={"schemas": [SCIM_PATCH_SCHEMA], "Operations": operations},
        ) or {}


def _error_code(exc: VendorError) -> str:
    payload = exc.payload if isinstance(exc.payload, dict) else {}
    return str(payload.get("error") or "")


class SlackProvisioner(Provisioner):
    """Provision Slack members, default channels and user groups."""

    config_model = SlackConfig
    display_name = "Slack"
    description = "Workspace membership, default channels and user groups"

    def __init__(self, client: SlackClient, *, workspace_url: str = "https://app.slack.com"):
        self.client = client
        self.workspace_url = workspace_url.rstrip("/")

    @property
    def name(self) -> str:
        return SLACK

    # ── Plan ────────────────────────────────────────────────────

    def plan(self, validated: ValidatedInput) -> Plan:
        cfg: SlackConfig = self.load_config(validated)
        email = cfg.work_email

        if cfg.deactivating:
            return Plan(
                provider=self.name,
                actions=[Action(type="update", resource="user", required=True,
                                details=f"Deactivate Slack member {email}")],
                estimated_time=5,
            )

        try:
            existing = self.client.find_user(email)
        except ProvisioningError as e:
            logger.debug("slack: user lookup failed, assuming absent: %s", e)
            existing = None

        if existing:
            actions = [Action(type="update", resource="user", required=True,
                              details=f"Update and reactivate Slack member {email}")]
        else:
            actions = [Action(type="create", resource="user", required=True,
                              details=f"Create Slack member {email} ({cfg.user_role})")]
        for channel in cfg.default_channels:
            actions.append(Action(type="assign", resource="channel",
                                  details=f"Invite {email} to #{channel}"))
        for group in cfg.user_groups:
            actions.append(Action(type="assign", resource="user_group",
                                  details=f"Add {email} to user group {group}"))
        return Plan(provider=self.name, actions=actions, estimated_time=10 + len(actions))

    # ── Apply ───────────────────────────────────────────────────

    def apply(self, validated: ValidatedInput) -> Result:
        try:
            cfg: SlackConfig = self.load_config(validated)
        except ProvisioningError as e:
            return Result.error(self.name, e.describe())

        if cfg.deactivating:
            return self._deactivate(cfg)
        return self._provision(cfg)

    def _ensure_user(self, cfg: SlackConfig) -> tuple[dict[str, Any], bool]:
        email = cfg.work_email
        name = {"givenName": cfg.given_name, "familyName": cfg.family_name}
        existing = self.client.find_user(email)

        if existing:
            self.client.patch_user(existing["id"], [
                {"op": "replace", "path": "name", "value": name},
                {"op": "replace", "path": "active", "value": True},
            ])
            logger.info("slack: updated %s", email)
            return existing, False

        user = self.client.create_user({
            "schemas": [SCIM_USER_SCHEMA],
            "userName": cfg.username,
            "displayName": cfg.full_name,
            "name": name,
            "emails": [{"value": email, "type": "work", "primary": True}],
            "active": True,
        })
        logger.info("slack: created %s", email)
        return user, True

    def _provision(self, cfg: SlackConfig) -> Result:
        outcome = ApplyOutcome(self.name)
        try:
            user, created = self._ensure_user(cfg)
        except Exception as e:
            return outcome.fail("user", e)

        user_id = str(user.get("id") or "")
        outcome.external_ids["slackUserId"] = user_id
        outcome.external_links["profile"] = f"{self.workspace_url}/team/{user_id}"
        outcome.metadata.update({
            "email": cfg.work_email,
            "userRole": cfg.user_role,
            "created": created,
        })

        steps: list[Step] = []
        if cfg.default_channels:
            channels = outcome.run(Step("channels", self._channel_index, advisory=True))
            if channels is not None:
                steps.extend(
                    Step(f"channel #{name}", partial(self._invite, channels, name, user_id),
                         advisory=True)
                    for name in cfg.default_channels
                )
        if cfg.user_groups:
            groups = outcome.run(Step("user groups", self.client.list_usergroups, advisory=True))
            if groups is not None:
                steps.extend(
                    Step(f"user group {name}", partial(self._add_to_group, groups, name, user_id),
                         advisory=True)
                    for name in cfg.user_groups
                )

        outcome.run_all(steps, concurrent=True)
        return outcome.to_result()

    def _channel_index(self) -> dict[str, str]:
        return {c["name"]: c["id"] for c in self.client.list_channels() if c.get("name")}

    def _invite(self, channels: dict[str, str], name: str, user_id: str) -> None:
        channel_id = channels.get(name)
        if channel_id is None:
            raise StepWarning(f"Channel not found: {name}")
        try:
            self.client.invite(channel_id, user_id)
        except VendorError as e:
            if _error_code(e) != "already_in_channel":
                raise

    def _add_to_group(self, groups: list[dict[str, Any]], name: str, user_id: str) -> None:
        group = next((g for g in groups if name in (g.get("name"), g.get("handle"))), None)
        if group is None:
            raise StepWarning(f"User group not found: {name}")
        members = list(group.get("users") or [])
        if user_id in members:
            return
        self.client.set_usergroup_users(group["id"], members + [user_id])

    def _deactivate(self, cfg: SlackConfig) -> Result:
        outcome = ApplyOutcome(self.name)
        email = cfg.work_email
        try:
            user = self.client.find_user(email)
            if user is None:
                raise NotFoundError(f"No Slack member {email}", provider=self.name)
            self.client.patch_user(user["id"], [
                {"op": "replace", "path": "active", "value": False},
            ])
        except Exception as e:
            return outcome.fail("user", e)

        logger.info("slack: deactivated %s", email)
        user_id = str(user["id"])
        outcome.external_ids["slackUserId"] = user_id
        outcome.external_links["profile"] = f"{self.workspace_url}/team/{user_id}"
        outcome.metadata.update({"email": email, "active": False})
        return outcome.to_result()
