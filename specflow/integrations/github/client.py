"""GitHub Issues REST adapter.

IssueTracker is the narrow surface the sync service depends on; tests pass
a fake or build GitHubIssueClient over an httpx.MockTransport.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import structlog

from specflow.config.settings import GitHubSettings
from specflow.infra.errors import ExternalServiceError

logger = structlog.get_logger()


@dataclass(frozen=True)
class RemoteIssue:
    id: str
    number: int
    node_id: str | None = None
    html_url: str | None = None
    state: str = "open"
    title: str = ""
    labels: list[str] = field(default_factory=list)


class IssueTracker(Protocol):
    async def create_issue(self, *, title: str, body: str, labels: list[str]) -> RemoteIssue: ...

    async def update_issue(
        self,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        labels: list[str] | None = None,
        state: str | None = None,
    ) -> RemoteIssue: ...

    async def get_issue(self, number: int) -> RemoteIssue | None:
        """Return None when the issue does not exist."""
        ...


def _to_remote_issue(data: dict[str, Any]) -> RemoteIssue:
    return RemoteIssue(
        id=str(data["id"]),
        number=int(data["number"]),
        node_id=data.get("node_id"),
        html_url=data.get("html_url"),
        state=data.get("state", "open"),
        title=data.get("title", ""),
        labels=[
            label["name"] if isinstance(label, dict) else str(label)
            for label in data.get("labels", [])
        ],
    )


class GitHubIssueClient:
    """IssueTracker over the GitHub REST API (repos/{owner}/{repo}/issues)."""

    def __init__(
        self,
        settings: GitHubSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.api_url,
            headers={
                "Authorization": f"Bearer {settings.token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=settings.timeout_s,
            transport=transport,
        )
        self._issues_path = f"/repos/{settings.owner}/{settings.repo}/issues"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(method, url, json=json_body)
            resp.raise_for_status()
            return resp
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning("github_request_failed", method=method, url=url, status=status)
            raise ExternalServiceError(
                f"GitHub {method} {url} failed with HTTP {status}: {e.response.text[:200]}",
                status_code=status,
            ) from e
        except httpx.TransportError as e:
            logger.warning("github_request_unreachable", method=method, url=url, error=str(e))
            raise ExternalServiceError(f"GitHub {method} {url} failed: {e}") from e

    async def create_issue(self, *, title: str, body: str, labels: list[str]) -> RemoteIssue:
        resp = await self._request(
            "POST",
            self._issues_path,
            json_body={"title": title, "body": body, "labels": labels},
        )
        issue = _to_remote_issue(resp.json())
        logger.info("github_issue_created", issue_number=issue.number)
        return issue

    async def update_issue(
        self,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        labels: list[str] | None = None,
        state: str | None = None,
    ) -> RemoteIssue:
        fields: dict[str, Any] = {"title": title, "body": body, "labels": labels, "state": state}
        payload = {k: v for k, v in fields.items() if v is not None}
        resp = await self._request("PATCH", f"{self._issues_path}/{number}", json_body=payload)
        return _to_remote_issue(resp.json())

    async def get_issue(self, number: int) -> RemoteIssue | None:
        try:
            resp = await self._request("GET", f"{self._issues_path}/{number}")
        except ExternalServiceError as e:
            if e.status_code in (404, 410):
                return None
            raise
        return _to_remote_issue(resp.json())
