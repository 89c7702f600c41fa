"""Configuration loader for the workflow decision core."""

import os
from typing import Any, Dict, List, Optional
import yaml
from dotenv import load_dotenv, find_dotenv

from nextstep.models.actions import ConfigRequest


REQUIRED_FIELDS = (
    "github.project.number",
    "github.project.id",
    "github.project.status_field_id",
    "github.project.status_options.todo",
    "github.project.status_options.in_progress",
    "github.project.status_options.done",
)


def load_environment() -> None:
    """Load variables from the nearest .env file, if any."""
    dotenv_path = find_dotenv(usecwd=True)
    if dotenv_path:
        load_dotenv(dotenv_path)


class Config:
    """Application configuration manager."""

    def __init__(self, config_path: Optional[str] = None, data: Optional[Dict[str, Any]] = None):
        """
        Load configuration from a YAML file or an in-memory mapping.

        Args:
            config_path: Path to config.yaml (defaults to ./config.yaml)
            data: Configuration mapping; takes precedence over the file
        """
        if data is not None:
            self._config = self._substitute_env_vars(data)
            self.path = None
            return

        explicit = config_path is not None
        if config_path is None:
            config_path = os.path.join(os.getcwd(), "config.yaml")

        if not os.path.exists(config_path):
            if explicit:
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            # Absent default file: every required field is reported missing
            self._config = {}
            self.path = None
            return

        with open(config_path, "r") as f:
            self._config = yaml.safe_load(f) or {}
        self.path = config_path

        # Substitute environment variables
        self._config = self._substitute_env_vars(self._config)

    def _substitute_env_vars(self, obj: Any) -> Any:
        """Recursively substitute ${ENV_VAR} patterns with environment variables."""
        if isinstance(obj, dict):
            return {k: self._substitute_env_vars(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._substitute_env_vars(item) for item in obj]
        elif isinstance(obj, str):
            if obj.startswith("${") and obj.endswith("}"):
                var_name = obj[2:-1]
                return os.getenv(var_name, "")
            return obj
        return obj

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-separated key.

        Args:
            key: Dot-separated key (e.g., "github.project.number")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config

        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def get_all(self) -> Dict[str, Any]:
        """Get complete configuration dictionary."""
        return self._config

    def missing_fields(self) -> List[str]:
        """Required project-board settings that are absent or empty."""
        return [key for key in REQUIRED_FIELDS if self.get(key) in (None, "")]

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    def config_request(self) -> ConfigRequest:
        """Build the request returned instead of an action when settings are missing."""
        missing = self.missing_fields()
        suggestions = []
        owner = self.repo_owner or "<owner>"
        if "github.project.number" in missing:
            suggestions.append(f'Run "gh project list --owner {owner}" to find your project number')
        if "github.project.id" in missing:
            suggestions.append(f'Run "gh project list --owner {owner} --format json" to find the project ID')
        if any(f.startswith("github.project.status") for f in missing):
            suggestions.append(
                f'Run "gh project field-list <project-number> --owner {owner} --format json" '
                "to find the Status field ID and its option IDs"
            )
        return ConfigRequest(missing_fields=missing, suggestions=suggestions)

    # Convenience properties

    @property
    def github_token(self) -> str:
        token = self.get("github.token", "") or os.getenv("GITHUB_TOKEN", "")
        if not token:
            raise ValueError("GitHub token not configured. Set GITHUB_TOKEN environment variable.")
        return token

    @property
    def github_api_url(self) -> str:
        return self.get("github.api_url", "https://api.github.com")

    @property
    def github_graphql_url(self) -> str:
        return self.get("github.graphql_url", "https://api.github.com/graphql")

    @property
    def repo_owner(self) -> Optional[str]:
        return self.get("github.owner")

    @property
    def repo_name(self) -> Optional[str]:
        return self.get("github.repo")

    @property
    def project_number(self) -> Optional[int]:
        value = self.get("github.project.number")
        return int(value) if value not in (None, "") else None

    @property
    def project_id(self) -> Optional[str]:
        return self.get("github.project.id")

    @property
    def project_owner_type(self) -> str:
        return self.get("github.project.owner_type", "user")

    @property
    def project_owner(self) -> Optional[str]:
        return self.get("github.project.owner", self.repo_owner)

    @property
    def status_field_id(self) -> Optional[str]:
        return self.get("github.project.status_field_id")

    @property
    def status_field_name(self) -> str:
        return self.get("github.project.status_field_name", "Status")

    def status_option_id(self, key: str) -> Optional[str]:
        return self.get(f"github.project.status_options.{key}")

    @property
    def todo_status(self) -> str:
        return self.get("github.project.status_names.todo", "Todo")

    @property
    def in_progress_status(self) -> str:
        return self.get("github.project.status_names.in_progress", "In Progress")

    @property
    def project_url(self) -> Optional[str]:
        owner = self.project_owner
        number = self.project_number
        if not owner or number is None:
            return None
        scope = "orgs" if self.project_owner_type == "organization" else "users"
        return f"https://github.com/{scope}/{owner}/projects/{number}"

    @property
    def default_branch(self) -> str:
        return self.get("workflow.default_branch", "main")

    @property
    def epic_label(self) -> str:
        return self.get("workflow.epic_label", "epic")

    @property
    def branch_prefix(self) -> str:
        return self.get("workflow.branch_prefix", "feature/")

    @property
    def bot_reviewers(self) -> List[str]:
        return self.get(
            "workflow.bot_reviewers",
            ["copilot-pull-request-reviewer[bot]", "copilot-pull-request-reviewer"],
        )

    @property
    def state_file(self) -> str:
        return self.get("workflow.state_file", ".nextstep-state.json")

    @property
    def max_workers(self) -> int:
        return int(self.get("workflow.max_workers", 4))

    @property
    def development_mode(self) -> bool:
        return self.get("development.debug", False)
