# -*- coding: utf-8 -*-

from __future__ import annotations
import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

DEFAULT_MAX_BODY_SIZE = 10 * 1024 * 1024
DEFAULT_JWT_HEADER_NAMES = ("Authorization", "X-JWT-Token", "X-Auth-Token", "JWT-Token")
DEFAULT_PAGE_TITLE = "Echo Server - Request Information"

_TRUE = ("1", "t", "true", "y", "yes", "on")
_FALSE = ("0", "f", "false", "n", "no", "off")

# ----------------------------- Parsing helpers -----------------------------

def _env_bool(val: Optional[str], default: bool) -> bool:
    if not val: return default
    v = val.strip().lower()
    if v in _TRUE: return True
    if v in _FALSE: return False
    return default

def _env_int(val: Optional[str], default: int, minimum: Optional[int] = None) -> int:
    if not val: return default
    try:
        n = int(val.strip())
    except ValueError:
        return default
    if minimum is not None and n < minimum: return default
    return n

def split_names(val: Optional[str]) -> Tuple[str, ...]:
    """Comma-separated list, whitespace-trimmed, empty entries dropped."""
    if not val: return ()
    return tuple(n for n in (p.strip() for p in val.split(",")) if n)

# ----------------------------- Settings -----------------------------

@dataclass(frozen=True)
class Settings:
    """Process configuration, read once at startup and handed to every component."""

    port: int = 8080
    tls_enabled: bool = False
    tls_port: int = 8443
    tls_cert_file: str = "/certs/tls.crt"
    tls_key_file: str = "/certs/tls.key"
    max_body_size: int = DEFAULT_MAX_BODY_SIZE
    jwt_header_names: Tuple[str, ...] = DEFAULT_JWT_HEADER_NAMES
    page_title: str = DEFAULT_PAGE_TITLE
    env_display: Tuple[str, ...] = ()
    log_healthchecks: bool = False
    readiness_delay_seconds: int = 0
    log_level: str = "INFO"
    # Snapshot of the process environment; server/k8s facts are read from here.
    environ: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env: Dict[str, str] = dict(os.environ if environ is None else environ)
        return cls(
            port=_env_int(env.get("PORT"), 8080, minimum=0),
            tls_enabled=_env_bool(env.get("TLS_ENABLED"), False),
            tls_port=_env_int(env.get("TLS_PORT"), 8443, minimum=0),
            tls_cert_file=env.get("TLS_CERT_FILE") or "/certs/tls.crt",
            tls_key_file=env.get("TLS_KEY_FILE") or "/certs/tls.key",
            max_body_size=_env_int(env.get("MAX_BODY_SIZE"), DEFAULT_MAX_BODY_SIZE, minimum=1),
            jwt_header_names=split_names(env.get("JWT_HEADER_NAMES")) or DEFAULT_JWT_HEADER_NAMES,
            page_title=env.get("ECHO_PAGE_TITLE") or DEFAULT_PAGE_TITLE,
            env_display=split_names(env.get("ECHO_ENVIRONMENT_VARIABLES_DISPLAY")),
            log_healthchecks=_env_bool(env.get("LOG_HEALTHCHECKS"), False),
            readiness_delay_seconds=_env_int(env.get("HEALTH_READINESS_DELAY_SECONDS"), 0, minimum=0),
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
            environ=env,
        )
