"""
Tests for the command-line interface.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import orjson
import pytest
from typer.testing import CliRunner

from dr import __version__
from dr.cli.main import app

runner = CliRunner()

# No search providers enabled, so dry runs never touch the network
OFFLINE_TOPIC = """\
report_title: AI Trading Weekly
keywords:
  primary: [AI]
search_queries: [AI trading]
collection_sources:
  google_news: false
  rss: false
"""


@pytest.fixture
def topic_file(temp_dir: Path) -> Path:
    path = temp_dir / "ai-trading.yaml"
    path.write_text(OFFLINE_TOPIC, encoding="utf-8")
    return path


class TestInfoCommands:
    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_config_redacts_key(self, mock_env_vars: dict[str, str]) -> None:
        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert "sk-ant-REDACTED" not in result.output
        assert "sk-ant-t...-key" in result.output

    def test_config_without_key_fails(
        self, temp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(temp_dir)
        with patch.dict(os.environ, {}, clear=True):
            result = runner.invoke(app, ["config"])

        assert result.exit_code == 1

    def test_progress_for_unknown_project(self, mock_env_vars: dict[str, str]) -> None:
        result = runner.invoke(app, ["progress", "never-ran"])

        assert result.exit_code == 0
        assert "No deep research runs" in result.output


class TestOutlineCommand:
    def test_generate_then_regenerate(
        self, mock_env_vars: dict[str, str], topic_file: Path, temp_dir: Path
    ) -> None:
        output = temp_dir / "outline.json"

        first = runner.invoke(app, ["outline", str(topic_file), "-o", str(output), "--dry-run"])
        assert first.exit_code == 0
        generated = orjson.loads(output.read_bytes())
        assert [s["id"] for s in generated["sections"]] == ["market-overview", "key-players"]

        second = runner.invoke(
            app,
            ["outline", str(topic_file), "-o", str(output), "--regenerate", "key-players", "-n"],
        )
        assert second.exit_code == 0
        updated = orjson.loads(output.read_bytes())
        assert updated["sections"][1]["id"] == "key-players"
        assert updated["sections"][1]["title"] == "Regenerated Section"
        assert updated["sections"][0] == generated["sections"][0]

    def test_unknown_section_fails(
        self, mock_env_vars: dict[str, str], topic_file: Path, temp_dir: Path
    ) -> None:
        output = temp_dir / "outline.json"
        runner.invoke(app, ["outline", str(topic_file), "-o", str(output), "-n"])

        result = runner.invoke(
            app, ["outline", str(topic_file), "-o", str(output), "--regenerate", "zeta", "-n"]
        )

        assert result.exit_code == 1


class TestRunCommands:
    def test_missing_topic_file(self, mock_env_vars: dict[str, str], temp_dir: Path) -> None:
        result = runner.invoke(app, ["fast", str(temp_dir / "missing.yaml"), "-n"])

        assert result.exit_code == 1

    def test_fast_dry_run_writes_report(
        self, mock_env_vars: dict[str, str], topic_file: Path
    ) -> None:
        result = runner.invoke(app, ["fast", str(topic_file), "--dry-run"])

        assert result.exit_code == 0, result.output
        reports = list((Path(mock_env_vars["DATA_DIR"]) / "ai-trading").glob("*.md"))
        assert len(reports) == 1
        assert reports[0].read_text(encoding="utf-8").startswith("# AI Trading Weekly")

    def test_deep_dry_run_writes_merged_report(
        self, mock_env_vars: dict[str, str], topic_file: Path
    ) -> None:
        result = runner.invoke(app, ["deep", str(topic_file), "-p", "deep-project", "-n"])

        assert result.exit_code == 0, result.output
        reports = list((Path(mock_env_vars["DATA_DIR"]) / "deep-project").glob("deep-*.md"))
        assert len(reports) == 1
        merged = reports[0].read_text(encoding="utf-8")
        assert merged.startswith("# Dry Run Report")
        assert "## Market Overview" in merged
