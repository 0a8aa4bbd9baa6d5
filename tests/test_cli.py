"""Tests for the Typer command line interface."""

import json

import pytest
from typer.testing import CliRunner

from src.cli import app
from src.infrastructure.settings import settings

runner = CliRunner()

RULES = [
    {"id": "glu-crit", "testCode": "GLU", "ruleType": "critical", "priority": 1,
     "conditions": {"criticalLow": 40, "criticalHigh": 500}},
    {"id": "glu-range", "testCode": "GLU", "ruleType": "range", "priority": 2,
     "conditions": {"minValue": 70, "maxValue": 100}},
    {"id": "glu-absurd", "testCode": "GLU", "ruleType": "absurd", "priority": 0,
     "conditions": {"absurdLow": 0, "absurdHigh": 5000}},
]


@pytest.fixture
def rules_file(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"rules": RULES}), encoding="utf-8")
    return str(path)


@pytest.fixture
def db_env(tmp_path, monkeypatch):
    monkeypatch.setenv("LV_DB_PATH", str(tmp_path / "lv.duckdb"))
    monkeypatch.delenv("LV_DEFAULT_TENANT", raising=False)
    settings.reload()
    yield tmp_path
    settings.reload()


class TestVersion:
    """Test global options."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "Lab-Verdict v1.0.0" in result.output

    def test_no_command_prints_help(self):
        result = runner.invoke(app, [])
        assert result.exit_code == 0
        assert "validate" in result.output


class TestValidateCommand:
    """Test single-value evaluation."""

    def test_normal_value(self, rules_file):
        result = runner.invoke(app, ["validate", "GLU", "85", "--rules", rules_file])
        assert result.exit_code == 0
        assert "validated" in result.output
        assert "normal" in result.output

    def test_critical_value(self, rules_file):
        result = runner.invoke(app, ["validate", "GLU", "550", "--rules", rules_file])
        assert result.exit_code == 0
        assert "requires_review" in result.output
        assert "Critical high value: 550 (>= 500)" in result.output

    def test_rejected_value_exits_nonzero(self, rules_file):
        result = runner.invoke(app, ["validate", "GLU", "6000", "--rules", rules_file])
        assert result.exit_code == 1
        assert "rejected" in result.output

    def test_json_output(self, rules_file):
        result = runner.invoke(app, ["validate", "GLU", "65", "--rules", rules_file, "--json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "validated"
        assert data["flag"] == "low"

    def test_unknown_type(self, rules_file):
        result = runner.invoke(app, ["validate", "GLU", "85", "--rules", rules_file, "--type", "blob"])
        assert result.exit_code == 1

    def test_bad_reference_range(self, rules_file):
        result = runner.invoke(app, ["validate", "GLU", "85", "--rules", rules_file, "--reference-range", "normal"])
        assert result.exit_code == 1

    def test_stored_rules_empty(self, db_env):
        result = runner.invoke(app, ["validate", "GLU", "85"])
        assert result.exit_code == 0
        assert "0 rule(s)" in result.output


class TestValidateBatchCommand:
    """Test batch validation."""

    def test_batch(self, db_env, rules_file):
        source = db_env / "results.csv"
        source.write_text("id,patient_id,test_code,value\nr1,P001,GLU,85\nr2,P002,GLU,550\n", encoding="utf-8")

        result = runner.invoke(app, ["validate-batch", str(source), "--rules", rules_file, "--tenant", "lab-1"])

        assert result.exit_code == 0
        assert "Rows read:" in result.output
        assert "Validation completed successfully" in result.output

    def test_batch_with_bad_rows(self, db_env):
        source = db_env / "results.csv"
        source.write_text("id,patient_id,test_code,value\nr1,,GLU,85\n", encoding="utf-8")

        result = runner.invoke(app, ["validate-batch", str(source)])

        assert result.exit_code == 1
        assert "error(s)" in result.output

    def test_missing_file(self, db_env):
        result = runner.invoke(app, ["validate-batch", str(db_env / "missing.csv")])
        assert result.exit_code != 0


class TestLintRulesCommand:
    """Test rule file linting."""

    def test_clean_rules(self, rules_file):
        result = runner.invoke(app, ["lint-rules", rules_file, "--test-code", "GLU"])
        assert result.exit_code == 0
        assert "3 rule(s) OK" in result.output

    def test_test_code_mismatch(self, rules_file):
        result = runner.invoke(app, ["lint-rules", rules_file, "--test-code", "K"])
        assert result.exit_code == 1
        assert "3 valid rule(s)" in result.output

    def test_rejected_document(self, tmp_path):
        path = tmp_path / "rules.json"
        path.write_text(json.dumps([RULES[0], {"id": "bad", "ruleType": "nope"}]), encoding="utf-8")
        result = runner.invoke(app, ["lint-rules", str(path)])
        assert result.exit_code == 1
        assert "1 rejected document(s)" in result.output


class TestQCCommand:
    """Test Westgard QC evaluation."""

    def test_accepted(self):
        result = runner.invoke(app, ["qc", "101", "--mean", "100", "--sd", "4"])
        assert result.exit_code == 0
        assert "QC run accepted" in result.output

    def test_rejected(self):
        result = runner.invoke(app, ["qc", "115", "--mean", "100", "--sd", "4"])
        assert result.exit_code == 1
        assert "QC run rejected" in result.output

    def test_warning(self):
        result = runner.invoke(app, ["qc", "109", "--mean", "100", "--sd", "4", "--rule", "12s"])
        assert result.exit_code == 0
        assert "QC run warning" in result.output

    def test_history_statistics(self):
        result = runner.invoke(app, ["qc", "101", "--mean", "100", "--sd", "4", "-p", "99", "-p", "100"])
        assert result.exit_code == 0
        assert "Series mean:" in result.output

    def test_unknown_rule(self):
        result = runner.invoke(app, ["qc", "101", "--mean", "100", "--sd", "4", "--rule", "99s"])
        assert result.exit_code == 1

    def test_zero_sd(self):
        result = runner.invoke(app, ["qc", "101", "--mean", "100", "--sd", "0"])
        assert result.exit_code == 1


class TestNotificationCommands:
    """Test escalation listing and acknowledgment."""

    def test_no_escalations(self, db_env):
        result = runner.invoke(app, ["escalations", "--minutes", "15"])
        assert result.exit_code == 0
        assert "No critical notifications pending longer than 15 minutes" in result.output

    def test_acknowledge_after_batch(self, db_env, rules_file):
        source = db_env / "results.csv"
        source.write_text("id,patient_id,test_code,value\nr1,P001,GLU,550\n", encoding="utf-8")
        runner.invoke(app, ["validate-batch", str(source), "--rules", rules_file])

        result = runner.invoke(app, ["acknowledge", "r1", "--by", "Dr. Reyes", "--method", "phone"])
        assert result.exit_code == 0
        assert "acknowledged by Dr. Reyes" in result.output

        again = runner.invoke(app, ["acknowledge", "r1", "--by", "Dr. Chen"])
        assert again.exit_code == 1

    def test_acknowledge_unknown(self, db_env):
        result = runner.invoke(app, ["acknowledge", "nope", "--by", "Dr. Reyes"])
        assert result.exit_code == 1


class TestInfoCommand:
    """Test the info command."""

    def test_info(self, db_env):
        result = runner.invoke(app, ["info"])
        assert result.exit_code == 0
        assert "Lab-Verdict" in result.output
        assert "Database Path:" in result.output
