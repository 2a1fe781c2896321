"""
Unit tests for introspection / revocation, authorization code issuance and
device approval.

Coverage:
* introspection of opaque and JWT access tokens, refresh tokens, unknown tokens
* caller authentication for introspection / revocation
* revocation ownership and non-cascading behaviour
* AuthorizationCodeFactory request checks and PKCE rules
* DeviceApprovalService lookup / approve
"""

from __future__ import annotations

import pytest

from oauth_issuer.token_engine.device import DeviceApprovalService
from oauth_issuer.token_engine.errors import (
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidScopeError,
    UnauthorizedClientError,
)
from oauth_issuer.token_engine.ids import user_code_ticket_id
from oauth_issuer.token_engine.models import (
    Authentication,
    DeviceToken,
    DeviceUserCode,
    Principal,
    RegisteredClient,
    TicketKind,
    TokenRequest,
)

NOW = 1_700_000_000
CLIENT_SECRET = "s3cr3t-value"
REDIRECT_URI = "https://app.example.com/callback"


def _tokens(engine, sso_session, client_id: str = "portal") -> dict:
    code = engine.codes.issue(
        client_id=client_id, redirect_uri=REDIRECT_URI, session=sso_session, scopes=["openid"]
    )
    resp = engine.handle(
        TokenRequest(
            params={"grant_type": "authorization_code", "code": code.id, "redirect_uri": REDIRECT_URI},
            basic_auth=(client_id, CLIENT_SECRET),
        )
    )
    assert resp.status_code == 200, resp.body
    return resp.body


def _call(method, token: str, client_id: str = "portal", secret: str | None = CLIENT_SECRET):
    basic = (client_id, secret) if secret is not None else None
    params = {"token": token}
    if basic is None:
        params["client_id"] = client_id
    return method(TokenRequest(params=params, basic_auth=basic))


# --------------------------------------------------------------------------- #
# Introspection                                                               #
# --------------------------------------------------------------------------- #
def test_introspect_opaque_access_token(engine, sso_session) -> None:
    tokens = _tokens(engine, sso_session)
    resp = _call(engine.introspect, tokens["access_token"])
    assert resp.status_code == 200
    body = resp.body
    assert body["active"] is True
    assert body["token_type"] == "access_token"
    assert body["client_id"] == "portal"
    assert body["sub"] == "alice"
    assert body["scope"] == "openid"
    assert body["aud"] == REDIRECT_URI
    assert body["exp"] - body["iat"] == 7200


def test_introspect_refresh_token(engine, sso_session) -> None:
    tokens = _tokens(engine, sso_session)
    body = _call(engine.introspect, tokens["refresh_token"]).body
    assert body["active"] is True
    assert body["token_type"] == "refresh_token"


def test_introspect_jwt_resolves_jti(engine, sso_session, store) -> None:
    tokens = _tokens(engine, sso_session, client_id="jwt-app")
    body = _call(engine.introspect, tokens["access_token"]).body
    assert body["active"] is True
    assert store.exists(body["jti"])


@pytest.mark.parametrize("token", ["AT-1-unknown", "not-a-jwt", "a.b.c"])
def test_introspect_unknown_is_inactive(engine, token: str) -> None:
    assert _call(engine.introspect, token).body == {"active": False}


def test_introspect_expired_is_inactive(engine, sso_session, clock) -> None:
    tokens = _tokens(engine, sso_session)
    clock.advance(7201)
    assert _call(engine.introspect, tokens["access_token"]).body == {"active": False}


def test_introspection_requires_confidential_caller(engine, sso_session) -> None:
    tokens = _tokens(engine, sso_session)
    assert _call(engine.introspect, tokens["access_token"], client_id="spa", secret=None).status_code == 401
    bad = _call(engine.introspect, tokens["access_token"], secret="wrong")
    assert bad.status_code == 401
    assert bad.body["error"] == "invalid_client"


def test_introspection_requires_token(engine) -> None:
    resp = engine.introspect(TokenRequest(params={}, basic_auth=("portal", CLIENT_SECRET)))
    assert resp.status_code == 400
    assert resp.body["error"] == "invalid_request"


# --------------------------------------------------------------------------- #
# Revocation                                                                  #
# --------------------------------------------------------------------------- #
def test_revoke_access_token(engine, sso_session, store) -> None:
    tokens = _tokens(engine, sso_session)
    resp = _call(engine.revoke, tokens["access_token"])
    assert resp.status_code == 200
    assert resp.body == {}
    assert not store.exists(tokens["access_token"])
    assert _call(engine.introspect, tokens["access_token"]).body == {"active": False}


def test_revoke_refresh_token_does_not_cascade(engine, sso_session, store) -> None:
    tokens = _tokens(engine, sso_session)
    _call(engine.revoke, tokens["refresh_token"])
    assert not store.exists(tokens["refresh_token"])
    assert store.exists(tokens["access_token"])


def test_revoke_unknown_token_succeeds(engine) -> None:
    assert _call(engine.revoke, "RT-1-unknown").status_code == 200


def test_revoke_foreign_token_rejected(engine, sso_session, store) -> None:
    tokens = _tokens(engine, sso_session)
    resp = _call(engine.revoke, tokens["access_token"], client_id="portal-keep")
    assert resp.body["error"] == "invalid_request"
    assert store.exists(tokens["access_token"])


# --------------------------------------------------------------------------- #
# Authorization codes                                                         #
# --------------------------------------------------------------------------- #
def test_issue_code_persists_ticket(engine, sso_session, store) -> None:
    code = engine.codes.issue(
        client_id="portal",
        redirect_uri=REDIRECT_URI,
        session=sso_session,
        scopes=["openid", "openid", "email"],
        nonce="n-1",
    )
    assert code.id.startswith("OC-")
    assert code.expires_at - code.created_at == 30
    assert code.scopes == ("openid", "email")
    assert code.session_id == sso_session.id
    stored = store.get(code.id, TicketKind.AUTHORIZATION_CODE)
    assert stored == code


def test_pkce_method_defaults_to_plain(engine, sso_session) -> None:
    code = engine.codes.issue(
        client_id="spa", redirect_uri=REDIRECT_URI, session=sso_session, code_challenge="x" * 43
    )
    assert code.code_challenge_method == "plain"


@pytest.mark.parametrize(
    ("kwargs", "error"),
    [
        ({"client_id": "ghost"}, InvalidClientError),
        ({"client_id": "reporting"}, UnauthorizedClientError),
        ({"redirect_uri": "https://evil.example.org/cb"}, InvalidRequestError),
        ({"client_id": "spa"}, InvalidRequestError),
        ({"code_challenge_method": "S256"}, InvalidRequestError),
        ({"code_challenge": "x" * 43, "code_challenge_method": "S512"}, InvalidRequestError),
        ({"session": None}, InvalidGrantError),
    ],
)
def test_issue_code_rejections(engine, sso_session, kwargs: dict, error: type) -> None:
    request = {"client_id": "portal", "redirect_uri": REDIRECT_URI, "session": sso_session}
    request.update(kwargs)
    with pytest.raises(error):
        engine.codes.issue(**request)


def test_issue_code_scope_restriction(engine, sso_session, clients, registry) -> None:
    restricted = RegisteredClient(
        client_id="narrow",
        client_secret=clients["portal"].client_secret,
        service_id_pattern=clients["portal"].service_id_pattern,
        allowed_grant_types=clients["portal"].allowed_grant_types,
        allowed_scopes=frozenset({"openid"}),
    )
    registry.register(restricted)
    with pytest.raises(InvalidScopeError):
        engine.codes.issue(
            client_id="narrow", redirect_uri=REDIRECT_URI, session=sso_session, scopes=["admin"]
        )


# --------------------------------------------------------------------------- #
# Device approval                                                             #
# --------------------------------------------------------------------------- #
@pytest.fixture
def pending_device(store) -> DeviceToken:
    device = DeviceToken(
        id="ODT-1-tv",
        created_at=NOW,
        expires_at=NOW + 300,
        client_id="spa",
        service="spa",
        user_code="BCDF-GHJK",
        interval=5,
    )
    store.add(device)
    store.add(
        DeviceUserCode(
            id=user_code_ticket_id(device.user_code),
            created_at=NOW,
            expires_at=NOW + 300,
            device_code=device.id,
        )
    )
    return device


def test_lookup_is_case_and_separator_insensitive(store, pending_device) -> None:
    service = DeviceApprovalService(store)
    assert service.lookup("bcdfghjk").id == pending_device.id
    assert service.lookup("BCDF GHJK").id == pending_device.id


def test_approve_records_on_both_tickets(store, pending_device) -> None:
    carol = Authentication(principal=Principal(id="carol"), authenticated_at=NOW)
    approved = DeviceApprovalService(store).approve("BCDF-GHJK", carol)

    assert approved.approved is True
    device = store.get(pending_device.id, TicketKind.DEVICE_TOKEN)
    assert device.approved and device.authentication == carol
    index = store.get(user_code_ticket_id("BCDF-GHJK"), TicketKind.DEVICE_USER_CODE)
    assert index.authentication == carol


def test_approve_expired_user_code(store, clock, pending_device) -> None:
    clock.advance(301)
    with pytest.raises(InvalidGrantError):
        DeviceApprovalService(store).approve(
            "BCDF-GHJK", Authentication(principal=Principal(id="carol"), authenticated_at=NOW)
        )
