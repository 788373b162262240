import requests

import gptpr.github as github
from gptpr.github import PullRequestClient


class _Response:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


def test_create_returns_html_url(monkeypatch):
    calls = []

    def post(url, json, headers, timeout):
        calls.append((url, json, headers))
        return _Response(201, {"html_url": "https://github.com/acme/widgets/pull/7"})

    monkeypatch.setattr(github.requests, "post", post)
    client = PullRequestClient("ghp_token")

    url = client.create("acme", "widgets", head="gpt-pr/health", base="main", title="Add /health", body="body")

    assert url == "https://github.com/acme/widgets/pull/7"
    endpoint, payload, headers = calls[0]
    assert endpoint == "https://api.github.com/repos/acme/widgets/pulls"
    assert payload == {"title": "Add /health", "body": "body", "head": "gpt-pr/health", "base": "main"}
    assert headers["Authorization"] == "Bearer ghp_token"


def test_create_non_201_returns_none(monkeypatch):
    monkeypatch.setattr(github.requests, "post", lambda *a, **k: _Response(422, text="Validation Failed"))
    assert PullRequestClient("t").create("o", "r", "h", "main", "t", "b") is None


def test_create_network_error_returns_none(monkeypatch):
    def post(*args, **kwargs):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr(github.requests, "post", post)
    assert PullRequestClient("t").create("o", "r", "h", "main", "t", "b") is None


def test_create_without_token_skips_request(monkeypatch):
    called = []
    monkeypatch.setattr(github.requests, "post", lambda *a, **k: called.append(1))
    assert PullRequestClient(None).create("o", "r", "h", "main", "t", "b") is None
    assert called == []
