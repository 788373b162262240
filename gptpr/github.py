"""
GitHub pull-request client.

One call: POST /repos/{owner}/{repo}/pulls. 201 yields the PR URL;
anything else is logged and returns None.
"""

from __future__ import annotations

import requests
from loguru import logger


class PullRequestClient:
    def __init__(self, token: str | None, api_url: str = "https://api.github.com", timeout: float = 30.0):
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def create(
        self,
        owner: str,
        repo: str,
        head: str,
        base: str,
        title: str,
        body: str,
    ) -> str | None:
        """Open a pull request and return its html_url, or None on any failure."""
        if not self.token:
            logger.error("[GITHUB] No token configured (GITHUB_ACCESS_TOKEN); cannot open PR.")
            return None

        url = f"{self.api_url}/repos/{owner}/{repo}/pulls"
        payload = {"title": title, "body": body, "head": head, "base": base}

        try:
            response = requests.post(url, json=payload, headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"[GITHUB] Error creating pull request: {e}")
            return None

        if response.status_code == 201:
            html_url = response.json().get("html_url")
            logger.info(f"[GITHUB] Pull request created: {html_url}")
            return html_url

        logger.error(f"[GITHUB] Error creating pull request: HTTP {response.status_code} {response.text[:500]}")
        return None
