"""
Tests for the Google Workspace provisioner against an in-memory directory.
"""

import pytest

from accountctl.adapters.directory.google_workspace import GoogleWorkspaceProvisioner
from accountctl.core.errors import ValidationError, VendorError
from accountctl.core.security.passwords import meets_policy


@pytest.fixture
def google(google_client):
    return GoogleWorkspaceProvisioner(google_client)


# ── Validate ────────────────────────────────────────────────────


class TestValidate:
    def test_default_org_unit(self, google):
        validated = google.validate({"fullName": "X", "workEmail": "x@y.com"})
        assert validated.data["primaryOrgUnit"] == "/"

    def test_defaults(self, google, jane):
        data = google.validate(jane).data
        assert data["provider"] == "google-workspace"
        assert data["licenseSku"] == "Google-Apps-For-Business"
        assert data["passwordMode"] == "auto"
        assert data["groups"] == []

    def test_email_normalized(self, google):
        data = google.validate({"fullName": "Jane Doe", "workEmail": "  Jane@Example.COM "}).data
        assert data["workEmail"] == "jane@example.com"

    def test_missing_name(self, google):
        with pytest.raises(ValidationError) as exc:
            google.validate({"workEmail": "jane@example.com"})
        assert any("fullName" in e for e in exc.value.errors)

    def test_bad_email(self, google):
        with pytest.raises(ValidationError) as exc:
            google.validate({"fullName": "Jane Doe", "workEmail": "not-an-email"})
        assert any("Invalid email" in e for e in exc.value.errors)

    def test_custom_password_required(self, google, jane):
        with pytest.raises(ValidationError) as exc:
            google.validate({**jane, "passwordMode": "custom"})
        assert any("customPassword" in e for e in exc.value.errors)

    def test_org_unit_must_be_path(self, google, jane):
        with pytest.raises(ValidationError):
            google.validate({**jane, "primaryOrgUnit": "Engineering"})

    def test_unknown_license(self, google, jane):
        with pytest.raises(ValidationError) as exc:
            google.validate({**jane, "licenseSku": "Nope"})
        assert exc.value.errors[0].startswith("licenseSku: unknown SKU")

    def test_validate_touches_no_vendor(self, google, google_client, jane):
        google.validate(jane)
        assert google_client.calls == []


# ── Plan ────────────────────────────────────────────────────────


class TestPlan:
    def test_new_user(self, google, google_client, jane):
        plan = google.plan(google.validate(jane))

        assert [(a.type, a.resource) for a in plan.actions] == [
            ("create", "user"),
            ("assign", "license"),
        ]
        assert plan.actions[0].required
        assert google_client.mutations == []

    def test_existing_user_plans_update(self, google, google_client, jane):
        google.apply(google.validate(jane))
        plan = google.plan(google.validate(jane))
        assert plan.first("user").type == "update"

    def test_groups_listed(self, google, jane):
        plan = google.plan(google.validate({**jane, "groups": ["eng@example.com", "all@example.com"]}))
        assert [a.details for a in plan.actions if a.resource == "group"] == [
            "Add jane@example.com to eng@example.com",
            "Add jane@example.com to all@example.com",
        ]

    def test_lookup_failure_assumes_absent(self, google, google_client, jane):
        google_client.fail["get_user"] = VendorError("boom", status_code=500)
        plan = google.plan(google.validate(jane))
        assert plan.first("user").type == "create"

    def test_deactivation_plan(self, google, jane):
        plan = google.plan(google.validate({**jane, "operation": "deactivate"}))
        assert [(a.type, a.resource) for a in plan.actions] == [
            ("delete", "user"),
            ("delete", "license"),
        ]


# ── Apply ───────────────────────────────────────────────────────


class TestApply:
    def test_end_to_end_new_user(self, google, google_client, jane):
        validated = google.validate(jane)
        plan = google.plan(validated)
        result = google.apply(validated)

        assert plan.first("user").type == "create"
        assert plan.first("license").type == "assign"
        assert result.status == "success"
        assert result.external_ids["userId"]
        assert result.metadata["email"] == "jane@example.com"
        assert result.metadata["created"] is True
        assert ("Google-Apps-For-Business", "jane@example.com") in google_client.licenses

    def test_user_body(self, google, google_client, jane):
        google.apply(google.validate({**jane, "primaryOrgUnit": "/Engineering",
                                      "department": "R&D", "jobTitle": "Engineer"}))
        body = google_client.called("insert_user")[0][0]
        assert body["name"] == {"givenName": "Jane", "familyName": "Doe"}
        assert body["orgUnitPath"] == "/Engineering"
        assert body["organizations"][0]["title"] == "Engineer"

    def test_generated_password_in_metadata(self, google, google_client, jane):
        result = google.apply(google.validate(jane))
        password = result.metadata["initialPassword"]
        assert meets_policy(password)
        assert google_client.called("insert_user")[0][0]["password"] == password

    def test_custom_password_not_echoed(self, google, google_client, jane):
        result = google.apply(google.validate({
            **jane, "passwordMode": "custom", "customPassword": "Correct-Horse-1",
        }))
        assert "initialPassword" not in result.metadata
        assert google_client.called("insert_user")[0][0]["password"] == "Correct-Horse-1"

    def test_idempotent_apply(self, google, google_client, jane):
        validated = google.validate(jane)
        first = google.apply(validated)
        second = google.apply(validated)

        assert len(google_client.called("insert_user")) == 1
        assert len(google_client.users) == 1
        assert second.external_ids["userId"] == first.external_ids["userId"]
        assert second.metadata["created"] is False
        assert second.status == "success"
        assert "initialPassword" not in second.metadata

    def test_license_failure_is_partial(self, google, google_client, jane):
        google_client.fail["assign_license"] = VendorError("quota exceeded", status_code=412)

        result = google.apply(google.validate(jane))

        assert result.status == "partial"
        assert result.external_ids["userId"]
        assert len(result.errors) == 1
        assert result.errors[0].startswith("license:")

    def test_group_failure_is_partial(self, google, google_client, jane):
        google_client.fail["add_group_member"] = VendorError("no such group", status_code=400)
        result = google.apply(google.validate({**jane, "groups": ["ghost@example.com"]}))
        assert result.status == "partial"
        assert result.errors[0].startswith("group ghost@example.com:")

    def test_existing_group_membership_is_ok(self, google, google_client, jane):
        google_client.groups["eng@example.com"] = {"jane@example.com"}
        result = google.apply(google.validate({**jane, "groups": ["eng@example.com"]}))
        assert result.status == "success"

    def test_primary_failure_is_error(self, google, google_client, jane):
        google_client.fail["insert_user"] = VendorError("backend error", status_code=503)

        result = google.apply(google.validate(jane))

        assert result.status == "error"
        assert result.external_ids == {}
        assert result.errors[0].startswith("user: Vendor error")
        assert google_client.called("assign_license") == []

    def test_existing_suspended_user_is_restored(self, google, google_client, jane):
        google_client.users["jane@example.com"] = {
            "id": "g-old", "primaryEmail": "jane@example.com", "suspended": True,
        }
        result = google.apply(google.validate(jane))
        assert result.external_ids["userId"] == "g-old"
        assert google_client.users["jane@example.com"]["suspended"] is False

    def test_apply_rejects_foreign_input(self, google, jane):
        from accountctl.core.models.provisioning import ValidatedInput

        result = google.apply(ValidatedInput(provider="slack", data=jane))
        assert result.status == "error"


# ── Deactivate ──────────────────────────────────────────────────


class TestDeactivate:
    def test_suspends_and_releases(self, google, google_client, jane):
        google.apply(google.validate(jane))
        result = google.apply(google.validate({**jane, "operation": "deactivate"}))

        assert result.status == "success"
        assert google_client.users["jane@example.com"]["suspended"] is True
        assert google_client.licenses == set()

    def test_license_already_released_is_ok(self, google, google_client, jane):
        google_client.users["jane@example.com"] = {"id": "g-9", "primaryEmail": "jane@example.com"}
        result = google.apply(google.validate({**jane, "operation": "deactivate"}))
        assert result.status == "success"

    def test_release_failure_is_warning(self, google, google_client, jane):
        google.apply(google.validate(jane))
        google_client.fail["release_license"] = VendorError("backend error", status_code=500)
        result = google.apply(google.validate({**jane, "operation": "deactivate"}))
        assert result.status == "partial"
        assert result.errors == []
        assert result.warnings[0].startswith("license:")

    def test_missing_user_is_error(self, google, jane):
        result = google.apply(google.validate({**jane, "operation": "deactivate"}))
        assert result.status == "error"
        assert "No Google Workspace user" in result.errors[0]

    def test_deactivate_needs_no_name(self, google):
        validated = google.validate({"workEmail": "jane@example.com", "operation": "deactivate"})
        assert validated.data["operation"] == "deactivate"
