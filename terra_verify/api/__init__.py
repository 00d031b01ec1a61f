"""HTTP API for submission intake and verification status."""

from terra_verify.api.main import create_app

__all__ = ["create_app"]
