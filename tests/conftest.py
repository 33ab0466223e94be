"""
Shared test fixtures — in-memory vendor doubles and service wiring.

Each fake client mirrors the public methods of its real counterpart,
keeps vendor state in dicts, records every call and can be told to
raise from any method via ``fail``.
"""

import io
import itertools
import json
import urllib.error
from pathlib import Path

import pytest

from accountctl.adapters.registry import ProvisionerRegistry
from accountctl.core.config.loader import Settings
from accountctl.core.errors import ConflictError, NotFoundError, VendorError
from accountctl.core.use_cases.provision import ProvisioningService


class _FakeClient:
    """Call recording and failure injection shared by the fakes."""

    read_methods: frozenset = frozenset()

    def __init__(self):
        self.calls = []
        self.fail = {}
        self._ids = itertools.count(1)

    def _call(self, method, *args):
        self.calls.append((method, args))
        exc = self.fail.get(method)
        if exc is not None:
            raise exc

    def _next_id(self, prefix):
        return f"{prefix}-{next(self._ids)}"

    @property
    def mutations(self):
        return [c for c in self.calls if c[0] not in self.read_methods]

    def called(self, method):
        return [args for name, args in self.calls if name == method]


# ── Google Workspace ────────────────────────────────────────────


class FakeGoogleClient(_FakeClient):
    read_methods = frozenset({"get_user"})

    def __init__(self):
        super().__init__()
        self.users = {}
        self.licenses = set()
        self.groups = {}

    def _find(self, key):
        if key in self.users:
            return self.users[key]
        return next((u for u in self.users.values() if u["id"] == key), None)

    def get_user(self, email):
        self._call("get_user", email)
        user = self.users.get(email)
        return dict(user) if user else None

    def insert_user(self, body):
        self._call("insert_user", body)
        email = body["primaryEmail"]
        if email in self.users:
            raise ConflictError("Entity already exists.", status_code=409)
        user = {"id": self._next_id("g"), "suspended": False, **body}
        self.users[email] = user
        return dict(user)

    def update_user(self, user_key, body):
        self._call("update_user", user_key, body)
        user = self._find(user_key)
        if user is None:
            raise NotFoundError(f"Resource Not Found: {user_key}", status_code=404)
        user.update(body)
        return dict(user)

    def assign_license(self, product_id, sku_id, email):
        self._call("assign_license", product_id, sku_id, email)
        if (sku_id, email) in self.licenses:
            raise ConflictError("User already has a license", status_code=409)
        self.licenses.add((sku_id, email))
        return {"skuId": sku_id, "userId": email}

    def release_license(self, product_id, sku_id, email):
        self._call("release_license", product_id, sku_id, email)
        if (sku_id, email) not in self.licenses:
            raise NotFoundError("License not found", status_code=404)
        self.licenses.discard((sku_id, email))

    def add_group_member(self, group, email):
        self._call("add_group_member", group, email)
        members = self.groups.setdefault(group, set())
        if email in members:
            raise ConflictError("Member already exists.", status_code=409)
        members.add(email)
        return {"email": email}


# ── Microsoft 365 ───────────────────────────────────────────────

E3_SKU = "6fd2c87f-b296-42f0-b197-1e91e994b900"
E5_SKU = "c7df2760-2c81-4ef7-b578-5b5392b571df"


class FakeGraphClient(_FakeClient):
    read_methods = frozenset({"find_user", "subscribed_skus"})

    def __init__(self):
        super().__init__()
        self.users = {}
        self.skus = [
            {
                "skuId": E3_SKU,
                "skuPartNumber": "ENTERPRISEPACK",
                "prepaidUnits": {"enabled": 10},
                "consumedUnits": 3,
                "servicePlans": [
                    {"servicePlanId": "plan-exchange", "servicePlanName": "EXCHANGE_S_ENTERPRISE",
                     "appliesTo": "User"},
                    {"servicePlanId": "plan-teams", "servicePlanName": "TEAMS1",
                     "appliesTo": "User"},
                ],
            },
            {
                "skuId": E5_SKU,
                "skuPartNumber": "ENTERPRISEPREMIUM",
                "prepaidUnits": {"enabled": 2},
                "consumedUnits": 2,
                "servicePlans": [],
            },
        ]
        self.group_members = {}
        self.managers = {}
        self.revoked = []

    def find_user(self, email, upn=None):
        self._call("find_user", email, upn)
        for user in self.users.values():
            if user.get("mail") == email or user.get("userPrincipalName") == (upn or email):
                return dict(user)
        return None

    def create_user(self, body):
        self._call("create_user", body)
        user = {"id": self._next_id("m"), "assignedLicenses": [], **body}
        self.users[user["id"]] = user
        return dict(user)

    def update_user(self, user_id, body):
        self._call("update_user", user_id, body)
        self.users[user_id].update(body)

    def subscribed_skus(self):
        self._call("subscribed_skus")
        return [dict(s) for s in self.skus]

    def assign_license(self, user_id, add, remove):
        self._call("assign_license", user_id, add, remove)
        user = self.users[user_id]
        added = {entry["skuId"] for entry in add}
        held = [lic for lic in user["assignedLicenses"]
                if lic["skuId"] not in remove and lic["skuId"] not in added]
        held.extend({"skuId": entry["skuId"], "disabledPlans": list(entry["disabledPlans"])}
                    for entry in add)
        user["assignedLicenses"] = held
        return {"id": user_id}

    def add_group_member(self, group_id, user_id):
        self._call("add_group_member", group_id, user_id)
        members = self.group_members.setdefault(group_id, set())
        if user_id in members:
            raise VendorError(
                "One or more added object references already exist", status_code=400
            )
        members.add(user_id)

    def set_manager(self, user_id, manager_id):
        self._call("set_manager", user_id, manager_id)
        self.managers[user_id] = manager_id

    def revoke_sessions(self, user_id):
        self._call("revoke_sessions", user_id)
        self.revoked.append(user_id)


# ── Slack ───────────────────────────────────────────────────────


class FakeSlackClient(_FakeClient):
    read_methods = frozenset({"find_user", "list_channels", "list_usergroups"})

    def __init__(self):
        super().__init__()
        self.users = {}
        self.channels = {"C1": {"id": "C1", "name": "general", "members": set()},
                         "C2": {"id": "C2", "name": "random", "members": set()}}
        self.usergroups = [{"id": "S1", "name": "Engineering", "handle": "eng", "users": []}]

    def find_user(self, email):
        self._call("find_user", email)
        user = self.users.get(email)
        return dict(user) if user else None

    def create_user(self, body):
        self._call("create_user", body)
        email = body["emails"][0]["value"]
        user = {"id": self._next_id("U"), **body}
        self.users[email] = user
        return dict(user)

    def patch_user(self, user_id, operations):
        self._call("patch_user", user_id, operations)
        user = next(u for u in self.users.values() if u["id"] == user_id)
        for op in operations:
            user[op["path"]] = op["value"]
        return dict(user)

    def list_channels(self):
        self._call("list_channels")
        return [{"id": c["id"], "name": c["name"]} for c in self.channels.values()]

    def invite(self, channel_id, user_id):
        self._call("invite", channel_id, user_id)
        members = self.channels[channel_id]["members"]
        if user_id in members:
            raise VendorError("conversations.invite: already_in_channel",
                              payload={"ok": False, "error": "already_in_channel"})
        members.add(user_id)

    def list_usergroups(self):
        self._call("list_usergroups")
        return [dict(g, users=list(g["users"])) for g in self.usergroups]

    def set_usergroup_users(self, group_id, user_ids):
        self._call("set_usergroup_users", group_id, user_ids)
        group = next(g for g in self.usergroups if g["id"] == group_id)
        group["users"] = list(user_ids)


# ── Jira ────────────────────────────────────────────────────────


class FakeJiraClient(_FakeClient):
    read_methods = frozenset({"find_user", "user_groups"})

    site = "https://acme.atlassian.net"

    def __init__(self):
        super().__init__()
        self.users = {}
        self.memberships = {}

    def for_site(self, site):
        self.calls.append(("for_site", (site,)))
        return self

    def find_user(self, email):
        self._call("find_user", email)
        user = self.users.get(email)
        return dict(user) if user else None

    def create_user(self, email, display_name, products):
        self._call("create_user", email, display_name, products)
        user = {"accountId": self._next_id("acc"), "emailAddress": email,
                "displayName": display_name, "accountType": "atlassian"}
        self.users[email] = user
        self.memberships[user["accountId"]] = {f"{p}-users" for p in products}
        return dict(user)

    def user_groups(self, account_id):
        self._call("user_groups", account_id)
        return [{"name": g} for g in sorted(self.memberships.get(account_id, set()))]

    def add_to_group(self, group, account_id):
        self._call("add_to_group", group, account_id)
        groups = self.memberships.setdefault(account_id, set())
        if group in groups:
            raise VendorError(f"User is already a member of '{group}'", status_code=400)
        groups.add(group)

    def remove_from_group(self, group, account_id):
        self._call("remove_from_group", group, account_id)
        groups = self.memberships.get(account_id, set())
        if group not in groups:
            raise NotFoundError(f"User is not a member of {group}", status_code=404)
        groups.discard(group)


# ── Zoom ────────────────────────────────────────────────────────


class FakeZoomClient(_FakeClient):
    read_methods = frozenset({"get_user"})

    def __init__(self):
        super().__init__()
        self.users = {}
        self.settings = {}

    def get_user(self, email):
        self._call("get_user", email)
        user = self.users.get(email)
        return dict(user) if user else None

    def create_user(self, user_info):
        self._call("create_user", user_info)
        user = {"id": self._next_id("z"), "status": "pending", **user_info}
        self.users[user_info["email"]] = user
        return {"id": user["id"], "email": user["email"], "type": user["type"]}

    def _by_id(self, user_id):
        return next(u for u in self.users.values() if u["id"] == user_id)

    def update_user(self, user_id, body):
        self._call("update_user", user_id, body)
        self._by_id(user_id).update(body)

    def update_settings(self, user_id, settings):
        self._call("update_settings", user_id, settings)
        self.settings.setdefault(user_id, []).append(settings)

    def set_status(self, user_id, action):
        self._call("set_status", user_id, action)
        self._by_id(user_id)["status"] = "active" if action == "activate" else "inactive"


# ── HTTP double ─────────────────────────────────────────────────


class FakeOpener:
    """urlopen stand-in: replays queued responses, records requests."""

    def __init__(self):
        self.requests = []
        self.responses = []

    def add(self, body=None, status=200):
        self.responses.append((status, body))

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        status, body = self.responses.pop(0)
        if isinstance(body, BaseException):
            raise body
        if isinstance(body, bytes):
            raw = body
        elif body is None:
            raw = b""
        else:
            raw = json.dumps(body).encode()
        if status >= 400:
            raise urllib.error.HTTPError(request.full_url, status, "error", {}, io.BytesIO(raw))
        return io.BytesIO(raw)

    def sent_json(self, index=-1):
        data = self.requests[index].data
        return json.loads(data) if data else None


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def tmp_state_dir(tmp_path: Path) -> Path:
    """Return a temporary directory for state files."""
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def google_client():
    return FakeGoogleClient()


@pytest.fixture
def graph_client():
    return FakeGraphClient()


@pytest.fixture
def slack_client():
    return FakeSlackClient()


@pytest.fixture
def jira_client():
    return FakeJiraClient()


@pytest.fixture
def zoom_client():
    return FakeZoomClient()


@pytest.fixture
def opener():
    return FakeOpener()


@pytest.fixture
def jane():
    return {"fullName": "Jane Doe", "workEmail": "jane@example.com"}


@pytest.fixture
def mock_registry():
    return ProvisionerRegistry(mock_mode=True)


@pytest.fixture
def mock_service(tmp_state_dir, mock_registry):
    """ProvisioningService on mock provisioners with state in tmp."""
    settings = Settings(state_dir=str(tmp_state_dir), app_timeout=10)
    service = ProvisioningService.from_settings(settings, registry=mock_registry)
    yield service
    service.shutdown()
