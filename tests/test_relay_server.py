import base64

import pytest
import requests

import relay_server


class UpstreamResponse:
    def __init__(self, status_code=200, content=b"", headers=None, body=None, reason="OK"):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {"Content-Type": "image/png"}
        self._body = body
        self.reason = reason
        self.text = content.decode("utf-8", "replace") if content else ""

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._body


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv("CLOUDFLARE_API_KEY", "cf-key")
    monkeypatch.setenv("CLOUDFLARE_ACCOUNT_ID", "acct123")
    monkeypatch.delenv("CLOUDFLARE_AUTH_EMAIL", raising=False)
    monkeypatch.delenv("CLOUDFLARE_IMAGE_MODEL", raising=False)
    return relay_server.app.test_client()


@pytest.fixture
def upstream(monkeypatch):
    calls = []
    state = {"response": UpstreamResponse(content=b"\x89PNG")}

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        if isinstance(state["response"], Exception):
            raise state["response"]
        return state["response"]

    monkeypatch.setattr(relay_server.requests, "post", fake_post)
    state["calls"] = calls
    return state


def test_status_reports_configuration(client):
    res = client.get("/api/status")
    data = res.get_json()

    assert res.status_code == 200
    assert data["hasApiKey"] is True
    assert data["accountId"] == "acct123"
    assert data["server"] == "Cloudflare AI Proxy"
    assert "T" in data["timestamp"]
    assert res.headers["Access-Control-Allow-Origin"] == "*"


def test_missing_prompt_is_400(client, upstream):
    res = client.post("/api/generate-image", json={"prompt": "  "})
    assert res.status_code == 400
    assert res.get_json() == {"error": "Prompt is required"}
    assert upstream["calls"] == []


def test_missing_key_is_500(client, upstream, monkeypatch):
    monkeypatch.delenv("CLOUDFLARE_API_KEY")
    res = client.post("/api/generate-image", json={"prompt": "a tower"})
    assert res.status_code == 500
    assert res.get_json() == {"error": "Cloudflare API key not configured"}


def test_binary_image_becomes_data_uri(client, upstream):
    res = client.post("/api/generate-image", json={"prompt": "a tower at dusk"})

    assert res.status_code == 200
    expected = "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode()
    assert res.get_json() == {"imageUrl": expected}

    url, kwargs = upstream["calls"][0]
    assert url == ("https://api.cloudflare.com/client/v4/accounts/acct123/ai/run/"
                   "@cf/bytedance/stable-diffusion-xl-lightning")
    assert kwargs["json"]["prompt"] == (
        "a tower at dusk, epic fantasy art, detailed, cinematic lighting, high quality"
    )
    assert kwargs["json"]["width"] == 1024
    assert kwargs["headers"]["Authorization"] == "Bearer cf-key"


def test_legacy_key_uses_email_headers(client, upstream, monkeypatch):
    monkeypatch.setenv("CLOUDFLARE_AUTH_EMAIL", "dm@example.com")
    client.post("/api/generate-image", json={"prompt": "a tower"})

    headers = upstream["calls"][0][1]["headers"]
    assert headers["X-Auth-Email"] == "dm@example.com"
    assert headers["X-Auth-Key"] == "cf-key"
    assert "Authorization" not in headers


def test_json_wrapped_image(client, upstream):
    upstream["response"] = UpstreamResponse(
        headers={"Content-Type": "application/json; charset=utf-8"},
        body={"result": {"image": "QUJD"}, "success": True},
    )
    res = client.post("/api/generate-image", json={"prompt": "a tower"})
    assert res.get_json() == {"imageUrl": "data:image/png;base64,QUJD"}


def test_upstream_error_status_passed_through(client, upstream):
    upstream["response"] = UpstreamResponse(
        status_code=429, content=b'{"errors":["rate limited"]}', reason="Too Many Requests",
    )
    res = client.post("/api/generate-image", json={"prompt": "a tower"})

    assert res.status_code == 429
    data = res.get_json()
    assert data["error"] == "Cloudflare API error: 429 Too Many Requests"
    assert "rate limited" in data["details"]


def test_transport_failure_is_500(client, upstream):
    upstream["response"] = requests.ConnectionError("connection refused")
    res = client.post("/api/generate-image", json={"prompt": "a tower"})

    assert res.status_code == 500
    assert res.get_json() == {"error": "Internal server error", "details": "connection refused"}


def test_preflight(client):
    res = client.open("/api/generate-image", method="OPTIONS")
    assert res.status_code == 204
    assert res.headers["Access-Control-Allow-Origin"] == "*"
