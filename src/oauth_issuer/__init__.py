"""OAuth 2.0 / OIDC token issuance engine."""

__version__ = "0.1.0"
