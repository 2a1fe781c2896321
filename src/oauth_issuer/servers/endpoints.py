"""OAuth 2.0 endpoints exposed over HTTP.

Handlers are intentionally thin:

1. Parse HTTP-layer input (form body, Basic auth, session cookie).
2. Delegate to :class:`~oauth_issuer.token_engine.service.TokenEngine`.
3. Render the engine's response as a Starlette ``Response``.

The base path is configurable (default: ``/oauth2.0``) so that reverse-proxies
can mount the application under arbitrary prefixes.

SECURITY NOTE
-------------
• No raw secrets (codes, tokens, client secrets, passwords, verifiers) are ever
  logged.
• Correlation IDs from ``request.state.correlation_id`` are passed to the
  engine and included in INFO logs to aid troubleshooting.

This module is HTTP-only and MUST remain free from business logic.
"""

from __future__ import annotations

import base64
import binascii
import logging
from urllib.parse import unquote, urlencode

from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from oauth_issuer.token_engine.errors import (
    InvalidRequestError,
    OAuthError,
    UnsupportedResponseTypeError,
)
from oauth_issuer.token_engine.models import TokenRequest
from oauth_issuer.token_engine.service import EngineResponse, TokenEngine
from oauth_issuer.utils.logging import mask_sensitive

_LOG = logging.getLogger("oauth-issuer.servers.endpoints")


# --------------------------------------------------------------------------- #
# Helpers                                                                     #
# --------------------------------------------------------------------------- #
def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "-")


def parse_basic_auth(header: str | None) -> tuple[str, str] | None:
    """Decode ``Authorization: Basic`` client credentials (RFC 6749 §2.3.1).

    Malformed headers are ignored; the extractor then reports the missing
    client id.
    """
    if not header:
        return None
    scheme, _, value = header.partition(" ")
    if scheme.lower() != "basic" or not value:
        return None
    try:
        decoded = base64.b64decode(value.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    client_id, sep, secret = decoded.partition(":")
    if not sep:
        return None
    return unquote(client_id), unquote(secret)


def parse_bearer_token(header: str | None) -> str | None:
    """Return the token of an ``Authorization: Bearer`` header (RFC 6750 §2.1)."""
    if not header or not header.startswith("Bearer "):
        return None
    return header[7:].strip() or None


async def _form_params(request: Request) -> dict[str, str]:
    form = await request.form()
    params: dict[str, str] = {}
    for key, value in form.multi_items():
        if not isinstance(value, str):
            continue
        if key in params:
            raise InvalidRequestError(f"parameter {key} was sent more than once")
        params[key] = value
    return params


def _render(resp: EngineResponse) -> JSONResponse:
    return JSONResponse(resp.body, status_code=resp.status_code, headers=dict(resp.headers))


def _render_error(exc: OAuthError) -> JSONResponse:
    return JSONResponse(
        exc.to_payload(), status_code=exc.status_code, headers={"Cache-Control": "no-store"}
    )


def _redirect(base: str, params: dict, *, fragment: bool = False) -> RedirectResponse:
    encoded = urlencode({k: v for k, v in params.items() if v is not None})
    if fragment:
        return RedirectResponse(f"{base}#{encoded}", status_code=302)
    sep = "&" if "?" in base else "?"
    return RedirectResponse(f"{base}{sep}{encoded}", status_code=302)


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def build_routes(engine: TokenEngine, *, base_path: str = "/oauth2.0") -> list[Route]:
    """Return the OAuth routes mounted under *base_path*."""
    cookie_name = engine.settings.session_cookie

    # ----- POST /token, /accessToken -------------------------------------- #
    async def token(request: Request) -> Response:
        try:
            params = await _form_params(request)
        except OAuthError as exc:
            return _render_error(exc)
        token_request = TokenRequest(
            params=params,
            basic_auth=parse_basic_auth(request.headers.get("authorization")),
        )
        resp = engine.handle(token_request, correlation_id=_correlation_id(request))
        _LOG.info(
            "Token request grant_type=%s status=%s correlation_id=%s",
            params.get("grant_type") or params.get("response_type") or "-",
            resp.status_code,
            _correlation_id(request),
        )
        return _render(resp)

    # ----- POST /device --------------------------------------------------- #
    async def device(request: Request) -> Response:
        try:
            params = await _form_params(request)
        except OAuthError as exc:
            return _render_error(exc)
        if "grant_type" not in params:
            params.setdefault("response_type", "device_code")
        token_request = TokenRequest(
            params=params,
            basic_auth=parse_basic_auth(request.headers.get("authorization")),
        )
        return _render(engine.handle(token_request, correlation_id=_correlation_id(request)))

    # ----- POST /device/approve ------------------------------------------- #
    async def device_approve(request: Request) -> Response:
        session = engine.session(request.cookies.get(cookie_name))
        if session is None:
            return JSONResponse({"error": "login_required"}, status_code=401)
        try:
            params = await _form_params(request)
        except OAuthError as exc:
            return _render_error(exc)
        user_code = params.get("user_code")
        if not user_code:
            return _render_error(InvalidRequestError("user_code is required"))
        _LOG.info(
            "Device approval user_code=%s correlation_id=%s",
            mask_sensitive(user_code, 2),
            _correlation_id(request),
        )
        return _render(engine.approve_device(user_code, session.authentication))

    # ----- POST /introspect ----------------------------------------------- #
    async def introspect(request: Request) -> Response:
        try:
            params = await _form_params(request)
        except OAuthError as exc:
            return _render_error(exc)
        token_request = TokenRequest(
            params=params, basic_auth=parse_basic_auth(request.headers.get("authorization"))
        )
        return _render(engine.introspect(token_request, correlation_id=_correlation_id(request)))

    # ----- POST /revoke --------------------------------------------------- #
    async def revoke(request: Request) -> Response:
        try:
            params = await _form_params(request)
        except OAuthError as exc:
            return _render_error(exc)
        token_request = TokenRequest(
            params=params, basic_auth=parse_basic_auth(request.headers.get("authorization"))
        )
        return _render(engine.revoke(token_request, correlation_id=_correlation_id(request)))

    # ----- GET|POST /profile ---------------------------------------------- #
    async def profile(request: Request) -> Response:
        access_token = parse_bearer_token(request.headers.get("authorization"))
        if access_token is None:
            if request.method == "POST":
                try:
                    params = await _form_params(request)
                except OAuthError as exc:
                    return _render_error(exc)
            else:
                params = dict(request.query_params)
            access_token = params.get("access_token")
        resp = engine.profile(access_token, correlation_id=_correlation_id(request))
        _LOG.info(
            "Profile request token=%s status=%s correlation_id=%s",
            mask_sensitive(access_token, 6),
            resp.status_code,
            _correlation_id(request),
        )
        return _render(resp)

    # ----- GET /authorize ------------------------------------------------- #
    async def authorize(request: Request) -> Response:
        query = dict(request.query_params)
        response_type = " ".join(sorted((query.get("response_type") or "").split()))
        redirect_uri = query.get("redirect_uri")
        session_id = request.cookies.get(cookie_name)
        state = query.get("state")

        if not redirect_uri:
            return _render_error(InvalidRequestError("redirect_uri is required"))

        if response_type == "code":
            try:
                code = engine.codes.issue(
                    client_id=query.get("client_id") or "",
                    redirect_uri=redirect_uri,
                    session=engine.session(session_id),
                    scopes=(query.get("scope") or "").split(),
                    code_challenge=query.get("code_challenge"),
                    code_challenge_method=query.get("code_challenge_method"),
                    nonce=query.get("nonce"),
                )
            except OAuthError as exc:
                # Never redirect errors to an unverified redirect_uri.
                return _render_error(exc)
            return _redirect(redirect_uri, {"code": code.id, "state": state})

        if response_type in ("token", "id_token token"):
            resp = engine.handle(
                TokenRequest(params=query, sso_session_id=session_id),
                correlation_id=_correlation_id(request),
            )
            if resp.status_code != 200:
                return _render(resp)
            return _redirect(redirect_uri, resp.body, fragment=True)

        return _render_error(
            UnsupportedResponseTypeError(f"response_type {response_type!r} is not supported")
        )

    return [
        Route(f"{base_path}/token", token, methods=["POST"]),
        Route(f"{base_path}/accessToken", token, methods=["POST"]),
        Route(f"{base_path}/device", device, methods=["POST"]),
        Route(f"{base_path}/device/approve", device_approve, methods=["POST"]),
        Route(f"{base_path}/introspect", introspect, methods=["POST"]),
        Route(f"{base_path}/revoke", revoke, methods=["POST"]),
        Route(f"{base_path}/profile", profile, methods=["GET", "POST"]),
        Route(f"{base_path}/authorize", authorize, methods=["GET"]),
    ]
