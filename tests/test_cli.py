"""
Tests for CLI commands — provision, deactivate, plan, validate, jobs,
scheduled jobs, audit, catalog, config check and global options.
"""

import json
import textwrap
from pathlib import Path

import pytest
from click.testing import CliRunner

from accountctl.main import cli

REQUEST = textwrap.dedent("""\
    employee:
      fullName: Jane Doe
      workEmail: jane@example.com
    applications:
      google-workspace:
        primaryOrgUnit: /Engineering
      slack:
        defaultChannels: ["#general"]
""")


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project directory with accountctl.yml and a request file."""
    (tmp_path / "accountctl.yml").write_text("state_dir: state\napp_timeout: 10\n")
    (tmp_path / "jane.yml").write_text(REQUEST)
    return tmp_path


def invoke(project: Path, *args: str):
    runner = CliRunner()
    return runner.invoke(cli, ["--config", str(project / "accountctl.yml"), *args])


class TestCLIGlobal:
    """Tests for global CLI behavior."""

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "provision" in result.output
        assert "deactivate" in result.output

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_bad_config_file(self, tmp_path):
        bad = tmp_path / "accountctl.yml"
        bad.write_text("- not\n- a mapping\n")
        (tmp_path / "jane.yml").write_text(REQUEST)
        result = CliRunner().invoke(cli, ["--config", str(bad), "provision",
                                          str(tmp_path / "jane.yml"), "--mock"])
        assert result.exit_code == 1
        assert "Expected a YAML mapping" in result.output


class TestProvisionCommand:
    def test_mock_run(self, project):
        result = invoke(project, "provision", str(project / "jane.yml"), "--mock")

        assert result.exit_code == 0, result.output
        assert "✓ google-workspace" in result.output
        assert "✓ slack" in result.output
        assert "Result: success (2 success)" in result.output

    def test_json_output(self, project):
        result = invoke(project, "provision", str(project / "jane.yml"), "--mock", "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["overall"] == "success"
        assert data["job"]["status"] == "completed"
        assert set(data["perApp"]) == {"google-workspace", "slack"}

    def test_job_persisted(self, project):
        invoke(project, "provision", str(project / "jane.yml"), "--mock")
        jobs = json.loads((project / "state" / "jobs.json").read_text())["jobs"]
        assert len(jobs) == 1
        assert jobs[0]["status"] == "completed"
        assert (project / "state" / "provisioning.ndjson").is_file()

    def test_plan_only_creates_no_job(self, project):
        result = invoke(project, "provision", str(project / "jane.yml"), "--mock", "--plan-only")

        assert result.exit_code == 0, result.output
        assert "📋 google-workspace" in result.output
        assert not (project / "state" / "jobs.json").exists()

    def test_invalid_request(self, project):
        (project / "bad.yml").write_text("employee: {}\napplications: [slack]\n")
        result = invoke(project, "provision", str(project / "bad.yml"), "--mock")
        assert result.exit_code == 1
        assert "❌" in result.output

    def test_request_must_be_mapping(self, project):
        (project / "list.yml").write_text("- slack\n")
        result = invoke(project, "provision", str(project / "list.yml"), "--mock")
        assert result.exit_code == 1
        assert "must be a mapping" in result.output

    def test_missing_file(self, project):
        result = invoke(project, "provision", str(project / "nope.yml"), "--mock")
        assert result.exit_code == 1
        assert "Cannot read request" in result.output

    def test_stdin(self, project):
        runner = CliRunner()
        result = runner.invoke(
            cli,
            ["--config", str(project / "accountctl.yml"), "provision", "-", "--mock", "--json"],
            input=json.dumps({"employee": {"fullName": "Jane Doe", "workEmail": "jane@example.com"},
                              "applications": ["zoom"]}),
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["perApp"]["zoom"]["status"] == "success"

    def test_unconfigured_provider_fails(self, project, monkeypatch):
        for name in ("SLACK_SCIM_TOKEN", "SLACK_BOT_TOKEN", "GOOGLE_CREDENTIALS_JSON"):
            monkeypatch.delenv(name, raising=False)
        result = invoke(project, "provision", str(project / "jane.yml"))
        assert result.exit_code == 1
        assert "No provisioner registered" in result.output


class TestDeactivateCommand:
    def test_forces_operation(self, project):
        result = invoke(project, "deactivate", str(project / "jane.yml"), "--mock", "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["operation"] == "deactivate"
        assert data["job"]["config"]["operation"] == "deactivate"

    def test_termination_payload(self, project):
        (project / "leaver.json").write_text(json.dumps({
            "userEmail": "jane@example.com",
            "selectedApps": {"zoom": True, "jira": True},
        }))
        result = invoke(project, "deactivate", str(project / "leaver.json"), "--mock", "--json")
        assert result.exit_code == 0, result.output
        assert set(json.loads(result.stdout)["perApp"]) == {"zoom", "jira"}


class TestPlanValidateCommands:
    def test_plan(self, project):
        result = invoke(project, "plan", str(project / "jane.yml"), "--mock", "--json")
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["ok"] is True
        assert data["plans"]["slack"]["actions"][0]["resource"] == "user"

    def test_validate_ok(self, project):
        result = invoke(project, "validate", str(project / "jane.yml"), "--mock")
        assert result.exit_code == 0, result.output
        assert "✓ slack" in result.output

    def test_validate_reports_errors(self, project):
        (project / "bad.yml").write_text(REQUEST + "  zoom:\n    licenseType: gold\n")
        result = invoke(project, "validate", str(project / "bad.yml"), "--mock")
        assert result.exit_code == 1
        assert "✗ zoom" in result.output
        assert "✓ slack" in result.output

    def test_providers(self, project):
        result = invoke(project, "providers", "--mock", "--json")
        assert result.exit_code == 0, result.output
        ids = [p["id"] for p in json.loads(result.stdout)]
        assert ids == ["google-workspace", "microsoft-365", "slack", "jira", "zoom"]


class TestJobsCommands:
    def _provision(self, project) -> str:
        result = invoke(project, "provision", str(project / "jane.yml"), "--mock", "--json")
        return json.loads(result.stdout)["job"]["id"]

    def test_list_empty(self, project):
        result = invoke(project, "jobs", "list")
        assert result.exit_code == 0
        assert "No jobs." in result.output

    def test_list(self, project):
        job_id = self._provision(project)
        result = invoke(project, "jobs", "list")
        assert job_id in result.output
        assert "jane@example.com" in result.output

    def test_list_status_filter(self, project):
        self._provision(project)
        result = invoke(project, "jobs", "list", "--status", "failed", "--json")
        assert json.loads(result.stdout) == []

    def test_show(self, project):
        job_id = self._provision(project)
        result = invoke(project, "jobs", "show", job_id)
        assert result.exit_code == 0
        assert "Overall: success" in result.output
        assert "• slack: success" in result.output

    def test_show_unknown(self, project):
        result = invoke(project, "jobs", "show", "nope")
        assert result.exit_code == 1
        assert "Job not found: nope" in result.output

    def test_cancel_finished(self, project):
        job_id = self._provision(project)
        result = invoke(project, "jobs", "cancel", job_id)
        assert result.exit_code == 1
        assert "already completed" in result.output


class TestScheduledJobsCommands:
    def _schedule(self, project) -> str:
        result = invoke(project, "provision", str(project / "jane.yml"), "--mock", "--json",
                        "--at", "2099-01-02T09:00:00+00:00")
        assert result.exit_code == 0, result.output
        return json.loads(result.stdout)["job"]["id"]

    def test_provision_at(self, project):
        result = invoke(project, "provision", str(project / "jane.yml"), "--mock",
                        "--at", "2099-01-02T09:00:00+00:00")
        assert result.exit_code == 0, result.output
        assert "scheduled for 2099-01-02T09:00:00+00:00" in result.output

        jobs = json.loads((project / "state" / "jobs.json").read_text())["jobs"]
        assert jobs[0]["status"] == "pending"
        assert not (project / "state" / "provisioning.ndjson").exists()

    def test_past_time_rejected(self, project):
        result = invoke(project, "provision", str(project / "jane.yml"), "--mock",
                        "--at", "2001-01-01T00:00:00")
        assert result.exit_code == 1
        assert "must be in the future" in result.output

    def test_list_shows_schedule(self, project):
        self._schedule(project)
        result = invoke(project, "jobs", "list")
        assert "🕒 2099-01-02T09:00:00+00:00" in result.output

    def test_run_now(self, project):
        job_id = self._schedule(project)

        result = invoke(project, "jobs", "run", job_id, "--mock")

        assert result.exit_code == 0, result.output
        assert "Result: success" in result.output
        shown = invoke(project, "jobs", "show", job_id, "--json")
        assert json.loads(shown.stdout)["status"] == "completed"

    def test_run_twice(self, project):
        job_id = self._schedule(project)
        invoke(project, "jobs", "run", job_id, "--mock")
        result = invoke(project, "jobs", "run", job_id, "--mock")
        assert result.exit_code == 1
        assert "already completed" in result.output

    def test_cancel_scheduled(self, project):
        job_id = self._schedule(project)
        result = invoke(project, "jobs", "cancel", job_id)
        assert result.exit_code == 0
        assert "cancelled" in result.output

    def test_run_due_nothing(self, project):
        self._schedule(project)
        result = invoke(project, "jobs", "run-due", "--mock")
        assert result.exit_code == 0
        assert "No scheduled jobs are due." in result.output


class TestAuditCommand:
    def test_empty(self, project):
        result = invoke(project, "audit")
        assert result.exit_code == 0
        assert "No audit entries." in result.output

    def test_history_for_employee(self, project):
        invoke(project, "provision", str(project / "jane.yml"), "--mock")
        invoke(project, "deactivate", str(project / "jane.yml"), "--mock")

        result = invoke(project, "audit", "--email", "jane@example.com", "--json")

        entries = json.loads(result.stdout)
        assert [e["operation"] for e in entries] == ["provision", "deactivate"]
        assert entries[0]["apps"] == ["google-workspace", "slack"]

    def test_other_employee(self, project):
        invoke(project, "provision", str(project / "jane.yml"), "--mock")
        result = invoke(project, "audit", "--email", "bob@example.com")
        assert "No audit entries." in result.output


class TestCatalogCommand:
    def test_pretty(self, project):
        result = invoke(project, "catalog")
        assert result.exit_code == 0
        assert "Google Workspace" in result.output
        assert "jira-software → jira-software-users" in result.output

    def test_json(self, project):
        result = invoke(project, "catalog", "--json")
        data = json.loads(result.stdout)
        assert data["zoom_add_ons"] == ["webinar", "cloud_recording", "large_meeting"]


class TestConfigCheck:
    def test_valid(self, project):
        result = invoke(project, "config", "check")
        assert result.exit_code == 0
        assert "Configuration is valid" in result.output

    def test_json(self, project):
        result = invoke(project, "config", "check", "--json")
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["config_path"].endswith("accountctl.yml")

    def test_invalid(self, tmp_path):
        bad = tmp_path / "accountctl.yml"
        bad.write_text("max_workers: 0\n")
        result = CliRunner().invoke(cli, ["--config", str(bad), "config", "check"])
        assert result.exit_code == 1
        assert "Configuration errors" in result.output
