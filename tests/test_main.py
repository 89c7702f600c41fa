"""
Tests for the command-line entry point.
"""

import json

import pytest
import yaml

from builders import config_data
from nextstep.main import main, parse_args


def write_config(tmp_path, with_token=True):
    data = config_data(state_file=str(tmp_path / "state.json"))
    if not with_token:
        del data["github"]["token"]
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


def run(argv, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code, json.loads(capsys.readouterr().out)


def test_parse_decide_arguments():
    args = parse_args(["--debug", "decide", "--decision-id", "board-next-issue-1", "--choice", "21"])

    assert args.debug is True
    assert args.command == "decide"
    assert args.decision_id == "board-next-issue-1"
    assert args.choice == "21"
    assert args.reasoning is None


def test_state_get_prints_document(tmp_path, capsys):
    code, output = run(["--config", write_config(tmp_path), "--repo-path", str(tmp_path), "state", "get"], capsys)

    assert code == 0
    assert output["version"] == 1
    assert output["phase"] == "ready"


def test_policy_command_updates_store(tmp_path, capsys):
    code, output = run(
        ["--config", write_config(tmp_path), "policy", "create_pr_when_commits_exist", "warn"],
        capsys,
    )

    assert code == 0
    assert output["enforcementPolicies"]["create_pr_when_commits_exist"] == "warn"


def test_missing_config_file_exits_with_error(tmp_path, capsys):
    code, output = run(["--config", str(tmp_path / "absent.yaml"), "next"], capsys)

    assert code == 1
    assert output["error"]["kind"] == "configuration_error"


def test_missing_token_exits_with_error(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("GITHUB_TOKEN", raising=False)
    monkeypatch.chdir(tmp_path)

    code, output = run(["--config", write_config(tmp_path, with_token=False), "state", "get"], capsys)

    assert code == 1
    assert "token" in output["error"]["message"]
