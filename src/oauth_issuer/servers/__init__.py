"""HTTP surface (Starlette) for the token engine."""
