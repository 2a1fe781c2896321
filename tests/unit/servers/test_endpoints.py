"""HTTP-level tests for the OAuth endpoints (Starlette app via httpx ASGITransport)."""

from __future__ import annotations

import base64
import urllib.parse

import httpx
import pytest

from oauth_issuer.servers.endpoints import parse_basic_auth, parse_bearer_token
from oauth_issuer.servers.main import create_app

# --------------------------------------------------------------------------- #
# Constants                                                                   #
# --------------------------------------------------------------------------- #
CLIENT_SECRET = "s3cr3t-value"
REDIRECT_URI = "https://app.example.com/callback"
BASE = "/oauth2.0"
FORM = {"Content-Type": "application/x-www-form-urlencoded"}


# --------------------------------------------------------------------------- #
# Fixtures                                                                    #
# --------------------------------------------------------------------------- #
@pytest.fixture()
async def client(engine):
    """Async HTTP client bound to an app serving the unit-test engine."""
    transport = httpx.ASGITransport(app=create_app(engine))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _cookie(session_id: str) -> dict[str, str]:
    return {"Cookie": f"TGC={session_id}"}


def _authorize_path(**params: str) -> str:
    return f"{BASE}/authorize?{urllib.parse.urlencode(params)}"


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #
def test_parse_basic_auth() -> None:
    raw = base64.b64encode(b"my%20client:p%3Ass").decode()
    assert parse_basic_auth(f"Basic {raw}") == ("my client", "p:ss")
    assert parse_basic_auth("Bearer abc") is None
    assert parse_basic_auth("Basic !!!") is None
    assert parse_basic_auth(None) is None


# --------------------------------------------------------------------------- #
# Token endpoint                                                              #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_healthz(client: httpx.AsyncClient):
    resp = await client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_client_credentials_with_basic_auth(client: httpx.AsyncClient):
    resp = await client.post(
        f"{BASE}/token",
        data={"grant_type": "client_credentials", "scope": "reports:read"},
        auth=("reporting", CLIENT_SECRET),
        headers={"X-Correlation-ID": "corr-123"},
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["token_type"] == "Bearer"
    assert body["access_token"].startswith("AT-")
    assert resp.headers["cache-control"] == "no-store"
    assert resp.headers["x-correlation-id"] == "corr-123"


@pytest.mark.anyio
async def test_correlation_id_generated(client: httpx.AsyncClient):
    resp = await client.post(f"{BASE}/accessToken", data={"grant_type": "client_credentials"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"
    assert len(resp.headers["x-correlation-id"]) == 32


@pytest.mark.anyio
async def test_invalid_client_challenge(client: httpx.AsyncClient):
    resp = await client.post(
        f"{BASE}/token",
        data={"grant_type": "client_credentials"},
        auth=("reporting", "wrong"),
    )
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid_client"
    assert resp.headers["www-authenticate"].startswith("Basic")


@pytest.mark.anyio
async def test_duplicate_parameter_rejected(client: httpx.AsyncClient):
    resp = await client.post(
        f"{BASE}/token",
        content="grant_type=client_credentials&grant_type=password",
        headers=FORM,
        auth=("reporting", CLIENT_SECRET),
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_request"


# --------------------------------------------------------------------------- #
# Authorize endpoint                                                          #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_authorize_code_redirect_then_token(client: httpx.AsyncClient, sso_session):
    resp = await client.get(
        _authorize_path(
            response_type="code", client_id="portal", redirect_uri=REDIRECT_URI, state="s-1"
        ),
        headers=_cookie(sso_session.id),
    )
    assert resp.status_code == 302
    location = urllib.parse.urlsplit(resp.headers["location"])
    query = urllib.parse.parse_qs(location.query)
    assert f"{location.scheme}://{location.netloc}{location.path}" == REDIRECT_URI
    assert query["state"] == ["s-1"]

    token = await client.post(
        f"{BASE}/token",
        data={
            "grant_type": "authorization_code",
            "code": query["code"][0],
            "redirect_uri": REDIRECT_URI,
        },
        auth=("portal", CLIENT_SECRET),
    )
    assert token.status_code == 200, token.text
    assert "refresh_token" in token.json()


@pytest.mark.anyio
async def test_authorize_without_session(client: httpx.AsyncClient):
    resp = await client.get(
        _authorize_path(response_type="code", client_id="portal", redirect_uri=REDIRECT_URI)
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_grant"


@pytest.mark.anyio
async def test_authorize_never_redirects_to_unregistered_uri(client: httpx.AsyncClient, sso_session):
    resp = await client.get(
        _authorize_path(
            response_type="code", client_id="portal", redirect_uri="https://evil.example.org/cb"
        ),
        headers=_cookie(sso_session.id),
    )
    assert resp.status_code == 400
    assert "location" not in resp.headers


@pytest.mark.anyio
async def test_authorize_implicit_fragment(client: httpx.AsyncClient, sso_session):
    resp = await client.get(
        _authorize_path(
            response_type="token", client_id="portal", redirect_uri=REDIRECT_URI, state="s-2"
        ),
        headers=_cookie(sso_session.id),
    )
    assert resp.status_code == 302
    location = resp.headers["location"]
    assert location.startswith(REDIRECT_URI + "#")
    fragment = urllib.parse.parse_qs(urllib.parse.urlsplit(location).fragment)
    assert fragment["access_token"][0].startswith("AT-")
    assert fragment["state"] == ["s-2"]


@pytest.mark.anyio
async def test_authorize_unsupported_response_type(client: httpx.AsyncClient, sso_session):
    resp = await client.get(
        _authorize_path(response_type="code token", client_id="portal", redirect_uri=REDIRECT_URI),
        headers=_cookie(sso_session.id),
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "unsupported_response_type"


# --------------------------------------------------------------------------- #
# Device endpoints                                                            #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_device_flow_over_http(client: httpx.AsyncClient, sso_session, clock):
    start = await client.post(f"{BASE}/device", data={"client_id": "spa"})
    assert start.status_code == 200, start.text
    device = start.json()
    assert device["verification_uri"] == "https://sso.example.com/oauth2.0/device"

    poll = {
        "grant_type": "urn:ietf:params:oauth:grant-type:device_code",
        "client_id": "spa",
        "device_code": device["device_code"],
    }
    pending = await client.post(f"{BASE}/token", data=poll)
    assert pending.json()["error"] == "authorization_pending"

    denied = await client.post(f"{BASE}/device/approve", data={"user_code": device["user_code"]})
    assert denied.status_code == 401
    assert denied.json() == {"error": "login_required"}

    approved = await client.post(
        f"{BASE}/device/approve",
        data={"user_code": device["user_code"]},
        headers=_cookie(sso_session.id),
    )
    assert approved.status_code == 200
    assert approved.json() == {"approved": True, "client_id": "spa"}

    clock.advance(device["interval"])
    issued = await client.post(f"{BASE}/device", data=poll)
    assert issued.status_code == 200, issued.text
    assert issued.json()["token_type"] == "Bearer"


# --------------------------------------------------------------------------- #
# Introspection & revocation                                                  #
# --------------------------------------------------------------------------- #
@pytest.mark.anyio
async def test_introspect_and_revoke(client: httpx.AsyncClient):
    issued = await client.post(
        f"{BASE}/token",
        data={"grant_type": "client_credentials"},
        auth=("reporting", CLIENT_SECRET),
    )
    access_token = issued.json()["access_token"]

    active = await client.post(
        f"{BASE}/introspect", data={"token": access_token}, auth=("reporting", CLIENT_SECRET)
    )
    assert active.status_code == 200
    assert active.json()["active"] is True
    assert active.json()["sub"] == "reporting"

    revoked = await client.post(
        f"{BASE}/revoke", data={"token": access_token}, auth=("reporting", CLIENT_SECRET)
    )
    assert revoked.status_code == 200

    inactive = await client.post(
        f"{BASE}/introspect", data={"token": access_token}, auth=("portal", CLIENT_SECRET)
    )
    assert inactive.json() == {"active": False}


# --------------------------------------------------------------------------- #
# Profile                                                                     #
# --------------------------------------------------------------------------- #
def test_parse_bearer_token() -> None:
    assert parse_bearer_token("Bearer AT-1-abc ") == "AT-1-abc"
    assert parse_bearer_token("Bearer ") is None
    assert parse_bearer_token("Basic abc") is None
    assert parse_bearer_token(None) is None


@pytest.mark.anyio
async def test_profile_with_bearer_header_and_parameter(client: httpx.AsyncClient):
    issued = await client.post(
        f"{BASE}/token",
        data={"grant_type": "client_credentials"},
        auth=("reporting", CLIENT_SECRET),
    )
    access_token = issued.json()["access_token"]

    by_header = await client.get(
        f"{BASE}/profile", headers={"Authorization": f"Bearer {access_token}"}
    )
    assert by_header.status_code == 200, by_header.text
    assert by_header.json()["id"] == "reporting"

    by_query = await client.get(f"{BASE}/profile", params={"access_token": access_token})
    assert by_query.json() == by_header.json()

    by_form = await client.post(f"{BASE}/profile", data={"access_token": access_token})
    assert by_form.json() == by_header.json()


@pytest.mark.anyio
async def test_profile_rejects_unknown_token(client: httpx.AsyncClient):
    resp = await client.get(f"{BASE}/profile", headers={"Authorization": "Bearer AT-1-unknown"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "invalid_token"
    assert resp.headers["www-authenticate"].startswith("Bearer")
