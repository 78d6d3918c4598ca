"""
pytest configuration and fixtures.
"""

import base64
import json
from typing import Any, Dict

import pytest

from app import create_app
from certs import CertificateProvisioner
from settings import Settings


def b64url(obj: Any) -> str:
    raw = obj if isinstance(obj, bytes) else json.dumps(obj, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def make_jwt(header: Dict[str, Any], payload: Dict[str, Any], signature: str = "sig") -> str:
    return f"{b64url(header)}.{b64url(payload)}.{signature}"


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the real process environment."""
    return Settings.from_env({})


@pytest.fixture(scope="session")
def generated_certificate():
    """One self-signed certificate for the whole run; RSA key generation is slow."""
    return CertificateProvisioner(hostname="test-host").generate()


@pytest.fixture
def app(settings):
    app = create_app(settings)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
