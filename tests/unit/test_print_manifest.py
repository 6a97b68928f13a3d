"""Tests for print_manifest.py tool."""
from __future__ import annotations

import json

import aws_cdk as cdk
import pytest

from src.composition import compose
from tools.print_manifest import main, manifests_as_dicts


class TestManifestsAsDicts:
    """Test exporting built stacks."""

    def test_records_in_build_order(self) -> None:
        records = manifests_as_dicts(compose(cdk.App(), "local"))

        assert [r["stack"] for r in records] == ["app-general-local", "app-notification-local"]

    def test_tokens_are_resolved(self) -> None:
        records = manifests_as_dicts(compose(cdk.App(), "local"))

        endpoint = records[1]["parameters"]["/local/app/notification/DatabaseEndpoint"]
        assert isinstance(endpoint, dict)
        assert "Fn::GetAtt" in endpoint

    def test_raw_tokens(self) -> None:
        records = manifests_as_dicts(compose(cdk.App(), "local"), resolve_tokens=False)

        endpoint = records[1]["parameters"]["/local/app/notification/DatabaseEndpoint"]
        assert isinstance(endpoint, str)
        assert "Token" in endpoint


class TestMain:
    """Test the command line entry point."""

    def test_prints_all_stacks(self, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code = main(["--env", "local"])

        output = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert len(output) == 2
        assert output[1]["dependsOn"] == ["app-general-local"]

    def test_single_stack(self, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code = main(["--env", "local", "--stack", "app-general-local"])

        output = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert [r["stack"] for r in output] == ["app-general-local"]

    def test_unknown_stack(self, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code = main(["--env", "local", "--stack", "nope"])

        assert exit_code == 1
        assert "No stack named 'nope'" in capsys.readouterr().err

    def test_unknown_environment(self, capsys: pytest.CaptureFixture[str]) -> None:
        exit_code = main(["--env", "staging"])

        assert exit_code == 1
        assert "staging" in capsys.readouterr().err

    def test_env_from_environment(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Test the environment defaults to ENV_NAME."""
        exit_code = main([])

        output = json.loads(capsys.readouterr().out)
        assert exit_code == 0
        assert output[0]["environment"] == "local"
