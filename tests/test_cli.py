"""
Tests for the CLI interface.
"""
import os
import tempfile

import pytest
import yaml
from typer.testing import CliRunner

from entitlement_guard.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL

runner = CliRunner()


@pytest.fixture
def db_path():
    """Initialized temporary database."""
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "cli.db")
        result = runner.invoke(app, ["--db", path, "init"])
        assert result.exit_code == EXIT_CODE_PASS
        yield path


def _invoke(db_path, *args):
    return runner.invoke(app, ["--db", db_path, *args])


class TestCLI:
    """Test CLI commands."""

    def test_no_command_prints_hint(self):
        result = runner.invoke(app, [])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_init(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            result = runner.invoke(app, ["--db", os.path.join(temp_dir, "x.db"), "init"])
        assert result.exit_code == EXIT_CODE_PASS
        assert "Database initialized successfully" in result.output

    def test_uninitialized_database(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            result = runner.invoke(
                app, ["--db", os.path.join(temp_dir, "x.db"), "summary", "acct"]
            )
        assert result.exit_code == EXIT_CODE_FAIL
        assert "not initialized" in result.output

    def test_create_account(self, db_path):
        result = _invoke(db_path, "create-account", "acct", "--plan", "scale")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Created account acct" in result.output

    def test_create_account_unknown_plan(self, db_path):
        result = _invoke(db_path, "create-account", "acct", "--plan", "platinum")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown plan" in result.output

    def test_create_duplicate_account(self, db_path):
        _invoke(db_path, "create-account", "acct")
        result = _invoke(db_path, "create-account", "acct")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "already exists" in result.output

    def test_summary(self, db_path):
        _invoke(db_path, "create-account", "acct", "--plan", "enterprise")
        result = _invoke(db_path, "summary", "acct")
        assert result.exit_code == EXIT_CODE_PASS
        assert "enterprise" in result.output
        assert "aiContent" in result.output
        assert "unlimited" in result.output

    def test_check_allowed_and_denied(self, db_path):
        _invoke(db_path, "create-account", "acct", "--plan", "free")

        allowed = _invoke(db_path, "check", "acct", "reviewsMonitored")
        assert allowed.exit_code == EXIT_CODE_PASS
        assert "Allowed" in allowed.output

        denied = _invoke(db_path, "check", "acct", "aiContent")
        assert denied.exit_code == EXIT_CODE_FAIL
        assert "feature_not_in_plan" in denied.output

    def test_check_unknown_feature(self, db_path):
        _invoke(db_path, "create-account", "acct")
        result = _invoke(db_path, "check", "acct", "faxes")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unknown feature" in result.output

    def test_record_counts_up(self, db_path):
        _invoke(db_path, "create-account", "acct", "--plan", "local_boost")
        _invoke(db_path, "record", "acct", "socialPosts")
        result = _invoke(db_path, "record", "acct", "socialPosts")
        assert result.exit_code == EXIT_CODE_PASS
        assert "count: 2" in result.output

    def test_record_enforced_denial(self, db_path):
        _invoke(db_path, "create-account", "acct", "--plan", "free")
        result = _invoke(db_path, "record", "acct", "aiContent", "--enforce")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "feature_not_in_plan" in result.output

    def test_set_plan(self, db_path):
        _invoke(db_path, "create-account", "acct", "--plan", "free")
        result = _invoke(db_path, "set-plan", "acct", "--plan", "scale", "--status", "past_due")
        assert result.exit_code == EXIT_CODE_PASS
        assert "scale" in result.output

        denied = _invoke(db_path, "check", "acct", "aiContent")
        assert "subscription_inactive" in denied.output

    def test_set_plan_requires_a_change(self, db_path):
        _invoke(db_path, "create-account", "acct")
        result = _invoke(db_path, "set-plan", "acct")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Nothing to change" in result.output

    def test_connect_disconnect_and_list(self, db_path):
        _invoke(db_path, "create-account", "acct")
        result = _invoke(db_path, "connect", "acct", "facebook", "--token", "tok", "--id", "page-1")
        assert result.exit_code == EXIT_CODE_PASS
        assert "Connected facebook" in result.output

        listing = _invoke(db_path, "platforms", "acct")
        assert listing.exit_code == EXIT_CODE_PASS
        assert "facebook" in listing.output
        assert "yes" in listing.output

        for _ in range(2):
            result = _invoke(db_path, "disconnect", "acct", "facebook")
            assert result.exit_code == EXIT_CODE_PASS

        listing = _invoke(db_path, "platforms", "acct")
        assert "yes" not in listing.output

    def test_connect_unsupported_platform(self, db_path):
        _invoke(db_path, "create-account", "acct")
        result = _invoke(db_path, "connect", "acct", "myspace", "--token", "tok", "--id", "x")
        assert result.exit_code == EXIT_CODE_FAIL
        assert "Unsupported platform" in result.output

    def test_adapt(self, db_path):
        result = _invoke(db_path, "adapt", "Great sale! #sale #local", "-p", "twitter", "-p", "linkedin")
        assert result.exit_code == EXIT_CODE_PASS
        assert "twitter" in result.output
        assert "Hashtags: sale, local" in result.output

    def test_config_option(self, db_path):
        with tempfile.TemporaryDirectory() as temp_dir:
            config_path = os.path.join(temp_dir, "engine.yaml")
            with open(config_path, 'w', encoding='utf-8') as f:
                yaml.dump({"platforms": {"twitter": {"max_length": 5, "extract_hashtags": True}}}, f)
            result = runner.invoke(
                app, ["--db", db_path, "--config", config_path, "adapt", "Hello world", "-p", "twitter"]
            )
        assert result.exit_code == EXIT_CODE_PASS
        assert "(truncated)" in result.output
        assert "Hello world" not in result.output
