"""Integrations package for external data providers."""

from nextstep.integrations.github_client import GitHubClient, get_github_client
from nextstep.integrations.graphql_client import GitHubGraphQLClient, get_graphql_client
from nextstep.integrations.git_client import GitClient, get_git_client

__all__ = [
    "GitHubClient",
    "get_github_client",
    "GitHubGraphQLClient",
    "get_graphql_client",
    "GitClient",
    "get_git_client",
]
