"""
Tests for configuration loading.
"""

import pytest

from builders import config_data
from nextstep.config import Config


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


def test_yaml_file_with_env_substitution(tmp_path, monkeypatch):
    monkeypatch.setenv("NEXTSTEP_TEST_TOKEN", "ghp_example")
    path = write_config(tmp_path, """
github:
  token: ${NEXTSTEP_TEST_TOKEN}
  owner: acme
  repo: widgets
  project:
    number: 7
    owner_type: organization
workflow:
  default_branch: develop
""")

    config = Config(path)

    assert config.github_token == "ghp_example"
    assert config.project_number == 7
    assert config.default_branch == "develop"
    assert config.project_url == "https://github.com/orgs/acme/projects/7"


def test_missing_env_var_becomes_empty(tmp_path, monkeypatch):
    monkeypatch.delenv("NEXTSTEP_UNSET_VAR", raising=False)
    path = write_config(tmp_path, "github:\n  project:\n    id: ${NEXTSTEP_UNSET_VAR}\n")

    assert "github.project.id" in Config(path).missing_fields()


def test_explicit_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config(str(tmp_path / "nope.yaml"))


def test_absent_default_file_is_empty(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    config = Config()

    assert config.get_all() == {}
    assert config.is_complete is False
    assert len(config.missing_fields()) == 6


def test_complete_configuration():
    config = Config(data=config_data())

    assert config.is_complete
    assert config.status_option_id("in_progress") == "opt-progress"
    assert config.in_progress_status == "In Progress"
    assert config.branch_prefix == "feature/"
    assert config.state_file == ".nextstep-state.json"


def test_config_request_lists_hints():
    request = Config(data={"github": {"owner": "acme"}}).config_request()

    assert request.action == "requires_config"
    assert request.missing_fields[0] == "github.project.number"
    assert len(request.suggestions) == 3


def test_dot_key_defaults():
    config = Config(data={"workflow": {"epic_label": "initiative"}})

    assert config.epic_label == "initiative"
    assert config.get("workflow.missing.key", "fallback") == "fallback"
    assert config.bot_reviewers == ["copilot-pull-request-reviewer[bot]", "copilot-pull-request-reviewer"]
