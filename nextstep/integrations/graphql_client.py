"""
GitHub GraphQL client for project boards, review threads and sub-issues.

Transport errors are retried here, in the provider layer; GraphQL-level
errors are raised as GraphQLError.
"""

from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)
import structlog

from nextstep.errors import GraphQLError
from nextstep.models.state import ProjectItem, SubIssue, ThreadSummary

logger = structlog.get_logger()


REVIEW_THREADS_QUERY = """
query($owner: String!, $repo: String!, $number: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      reviewThreads(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          isResolved
          comments(first: 100) { nodes { databaseId } }
        }
      }
    }
  }
}
"""

PROJECT_ITEMS_QUERY = """
query($owner: String!, $projectNumber: Int!, $cursor: String) {
  %(scope)s(login: $owner) {
    projectV2(number: $projectNumber) {
      items(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          content {
            ... on Issue {
              number
              title
              body
              state
              labels(first: 20) { nodes { name } }
              assignees(first: 10) { nodes { login } }
            }
          }
          fieldValues(first: 20) {
            nodes {
              ... on ProjectV2ItemFieldSingleSelectValue {
                name
                field { ... on ProjectV2SingleSelectField { name } }
              }
            }
          }
        }
      }
    }
  }
}
"""

SUB_ISSUES_QUERY = """
query($owner: String!, $repo: String!, $number: Int!) {
  repository(owner: $owner, name: $repo) {
    issue(number: $number) {
      title
      subIssues(first: 100) {
        nodes {
          number
          title
          state
          labels(first: 20) { nodes { name } }
          assignees(first: 10) { nodes { login } }
        }
      }
    }
  }
}
"""

UPDATE_STATUS_MUTATION = """
mutation($projectId: ID!, $itemId: ID!, $fieldId: ID!, $optionId: String!) {
  updateProjectV2ItemFieldValue(input: {
    projectId: $projectId,
    itemId: $itemId,
    fieldId: $fieldId,
    value: { singleSelectOptionId: $optionId }
  }) {
    projectV2Item { id }
  }
}
"""


def _names(connection: Optional[Dict[str, Any]], key: str) -> List[str]:
    return [node[key] for node in (connection or {}).get("nodes") or [] if node and node.get(key)]


class GitHubGraphQLClient:
    """Minimal GraphQL client over httpx."""

    def __init__(
        self,
        token: str,
        url: str = "https://api.github.com/graphql",
        timeout: int = 30,
    ):
        self.url = url
        self.timeout = timeout
        self.client = httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {token}"},
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    def execute(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a query or mutation.

        Args:
            query: GraphQL document
            variables: Query variables

        Returns:
            The `data` object of the response

        Raises:
            GraphQLError: on HTTP errors, GraphQL errors or a missing payload
        """
        response = self.client.post(self.url, json={"query": query, "variables": variables or {}})
        if response.status_code != 200:
            logger.error("graphql_http_error", status_code=response.status_code)
            raise GraphQLError(f"GraphQL request failed with HTTP {response.status_code}")

        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(e.get("message", "unknown error") for e in payload["errors"])
            logger.error("graphql_errors", errors=messages)
            raise GraphQLError(messages)
        if payload.get("data") is None:
            raise GraphQLError("GraphQL response carried no data")
        return payload["data"]

    def get_review_threads(self, owner: str, repo: str, number: int) -> ThreadSummary:
        """Resolution counts of a PR's review threads, following pagination."""
        summary = ThreadSummary()
        cursor = None

        while True:
            data = self.execute(
                REVIEW_THREADS_QUERY,
                {"owner": owner, "repo": repo, "number": number, "cursor": cursor},
            )
            try:
                connection = data["repository"]["pullRequest"]["reviewThreads"]
            except (KeyError, TypeError):
                raise GraphQLError(f"Malformed review threads payload for PR #{number}")

            for node in connection.get("nodes") or []:
                if not node:
                    continue
                summary.total += 1
                if node.get("isResolved"):
                    summary.resolved += 1
                    summary.resolved_comment_ids.extend(_names(node.get("comments"), "databaseId"))

            page = connection.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                break
            cursor = page.get("endCursor")

        return summary

    def get_project_items(
        self,
        owner: str,
        project_number: int,
        owner_type: str = "user",
        status_field: str = "Status",
        epic_label: str = "epic",
    ) -> List[ProjectItem]:
        """All issue items on a project board, following pagination."""
        scope = "organization" if owner_type == "organization" else "user"
        query = PROJECT_ITEMS_QUERY % {"scope": scope}
        items: List[ProjectItem] = []
        cursor = None

        while True:
            data = self.execute(query, {"owner": owner, "projectNumber": project_number, "cursor": cursor})
            try:
                connection = data[scope]["projectV2"]["items"]
            except (KeyError, TypeError):
                raise GraphQLError(f"Project {project_number} not found for {owner}")

            for node in connection.get("nodes") or []:
                item = self._parse_project_item(node, status_field, epic_label)
                if item is not None:
                    items.append(item)

            page = connection.get("pageInfo") or {}
            if not page.get("hasNextPage"):
                break
            cursor = page.get("endCursor")

        logger.debug("project_items_fetched", count=len(items), project=project_number)
        return items

    def _parse_project_item(
        self, node: Dict[str, Any], status_field: str, epic_label: str
    ) -> Optional[ProjectItem]:
        content = (node or {}).get("content")
        # Draft items and pull requests have no issue number
        if not content or "number" not in content:
            return None

        status = None
        for value in (node.get("fieldValues") or {}).get("nodes") or []:
            if value and (value.get("field") or {}).get("name") == status_field:
                status = value.get("name")

        return ProjectItem(
            item_id=node.get("id"),
            number=content["number"],
            title=content.get("title", ""),
            body=content.get("body") or "",
            state="open" if content.get("state") == "OPEN" else "closed",
            labels=_names(content.get("labels"), "name"),
            assignees=_names(content.get("assignees"), "login"),
            status=status,
            epic_label=epic_label,
        )

    def get_sub_issues(self, owner: str, repo: str, number: int) -> List[SubIssue]:
        """Sub-issues linked under an epic."""
        data = self.execute(SUB_ISSUES_QUERY, {"owner": owner, "repo": repo, "number": number})
        try:
            issue = data["repository"]["issue"]
        except (KeyError, TypeError):
            raise GraphQLError(f"Malformed sub-issue payload for #{number}")
        if issue is None or issue.get("subIssues") is None:
            raise GraphQLError(f"Issue #{number} has no sub-issue connection")

        sub_issues = []
        for node in issue["subIssues"].get("nodes") or []:
            if not node:
                continue
            sub_issues.append(SubIssue(
                number=node["number"],
                title=node.get("title", ""),
                state="open" if node.get("state") == "OPEN" else "closed",
                labels=_names(node.get("labels"), "name"),
                assignees=_names(node.get("assignees"), "login"),
            ))
        return sorted(sub_issues, key=lambda issue: issue.number)

    def update_item_status(self, project_id: str, item_id: str, field_id: str, option_id: str) -> None:
        """Set a single-select field (the board status) on a project item."""
        self.execute(UPDATE_STATUS_MUTATION, {
            "projectId": project_id,
            "itemId": item_id,
            "fieldId": field_id,
            "optionId": option_id,
        })
        logger.info("project_item_status_updated", item_id=item_id, option_id=option_id)

    def close(self):
        self.client.close()


def get_graphql_client(token: str, url: str = "https://api.github.com/graphql") -> GitHubGraphQLClient:
    """Create a new GraphQL client."""
    return GitHubGraphQLClient(token=token, url=url)
