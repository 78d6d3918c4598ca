# -*- coding: utf-8 -*-

from __future__ import annotations
import datetime
import logging
import re
import socket
from typing import Dict, List, Mapping, Optional, Tuple

import psutil
from werkzeug.datastructures import Headers
from werkzeug.http import http_date

from body import BodyDecoder
from models import (
    CertificateDescriptor, CompressionDescriptor, CookieDescriptor, KubernetesInfo, RequestInfo,
    RequestSnapshot, RequestTLSInfo, ServerInfo,
)
from settings import Settings
from tokens import TokenExtractor

log = logging.getLogger(__name__)

BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")
STATUS_HEADER = "x-set-response-status-code"
SET_COOKIE_HEADER = "x-set-cookie"
DEFAULT_STATUS = 200
_STATUS_DIGITS = re.compile(r"[+-]?[0-9]+")

# Tried in order, first match wins: RFC 1123, RFC 850, asctime.
_EXPIRES_FORMATS = (
    "%a, %d %b %Y %H:%M:%S %Z",
    "%A, %d-%b-%y %H:%M:%S %Z",
    "%a %b %d %H:%M:%S %Y",
)
_SAMESITE = {"strict": "Strict", "lax": "Lax", "none": "None"}

# ----------------------------- Header helpers -----------------------------

def remote_address(headers: Headers, peer: Optional[str]) -> str:
    xff = headers.get("X-Forwarded-For", "")
    if xff:
        return xff.split(",")[0].strip()
    xri = headers.get("X-Real-IP", "")
    if xri:
        return xri
    return peer or ""

def custom_status_code(headers: Headers) -> int:
    raw = (headers.get(STATUS_HEADER) or "").strip()
    # int() would also take "4_04" or non-ASCII digits
    if not _STATUS_DIGITS.fullmatch(raw): return DEFAULT_STATUS
    code = int(raw)
    return code if 200 <= code <= 599 else DEFAULT_STATUS

def accepted_encodings(value: str) -> List[str]:
    out: List[str] = []
    for part in (value or "").split(","):
        enc = part.split(";", 1)[0].strip()
        if enc: out.append(enc)
    return out

def compression_info(headers: Headers, response_encoding: str = "") -> CompressionDescriptor:
    encodings = tuple(accepted_encodings(headers.get("Accept-Encoding", "")))
    return CompressionDescriptor(accepted_encodings=encodings,
                                 response_encoding=response_encoding or "",
                                 supported=len(encodings) > 0)

# ----------------------------- Cookies -----------------------------

def parse_cookies(cookie_header: str) -> Tuple[CookieDescriptor, ...]:
    out: List[CookieDescriptor] = []
    for pair in (cookie_header or "").split(";"):
        pair = pair.strip()
        if "=" not in pair: continue
        name, value = pair.split("=", 1)
        name = name.strip()
        if not name: continue
        out.append(CookieDescriptor(name=name, value=value.strip()))
    return tuple(out)

def parse_expires(value: str) -> Optional[datetime.datetime]:
    for fmt in _EXPIRES_FORMATS:
        try:
            return datetime.datetime.strptime(value, fmt).replace(tzinfo=datetime.timezone.utc)
        except ValueError:
            continue
    try:
        dt = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=datetime.timezone.utc)

def parse_set_cookie(value: str) -> Optional[CookieDescriptor]:
    """Parse ``name=value; Domain=..; Path=..; Expires=..; Max-Age=..; HttpOnly; Secure; SameSite=..``."""
    parts = (value or "").split(";")
    head = parts[0].strip()
    if "=" not in head: return None
    name, val = (s.strip() for s in head.split("=", 1))
    attrs: Dict[str, object] = {}
    for raw in parts[1:]:
        key, _, arg = raw.strip().partition("=")
        key = key.strip().lower(); arg = arg.strip()
        has_arg = "=" in raw
        if key == "domain" and has_arg:
            attrs["domain"] = arg
        elif key == "path" and has_arg:
            attrs["path"] = arg
        elif key == "expires" and has_arg:
            dt = parse_expires(arg)
            if dt is not None: attrs["expires"] = http_date(dt)
        elif key == "max-age" and has_arg:
            try: attrs["max_age"] = int(arg)
            except ValueError: pass
        elif key == "httponly":
            attrs["http_only"] = True
        elif key == "secure":
            attrs["secure"] = True
        elif key == "samesite" and has_arg:
            ss = _SAMESITE.get(arg.lower())
            if ss: attrs["same_site"] = ss
    return CookieDescriptor(name=name, value=val, **attrs)  # type: ignore[arg-type]

# ----------------------------- Server / cluster facts -----------------------------

def host_address() -> str:
    """First non-loopback IPv4 address of this host, or empty."""
    try:
        interfaces = psutil.net_if_addrs()
    except OSError as e:
        log.debug("interface listing failed: %s", e)
        return ""
    for addrs in interfaces.values():
        for a in addrs:
            if a.family == socket.AF_INET and a.address and not a.address.startswith("127."):
                return a.address
    return ""

def is_kubernetes(environ: Mapping[str, str]) -> bool:
    return bool(environ.get("K8S_NAMESPACE")) and bool(environ.get("K8S_POD_NAME"))

def environment_subset(settings: Settings) -> Dict[str, str]:
    env = settings.environ
    out: Dict[str, str] = {}
    if settings.env_display:
        for name in settings.env_display:
            if env.get(name): out[name] = env[name]
    elif env.get("HOSTNAME"):
        out["HOSTNAME"] = env["HOSTNAME"]
    if not is_kubernetes(env):
        out.update({k: v for k, v in env.items() if k.startswith("K8S_")})
    return out

def _prefixed(environ: Mapping[str, str], prefix: str) -> Dict[str, str]:
    return {k[len(prefix):]: v for k, v in environ.items() if k.startswith(prefix)}

def kubernetes_info(environ: Mapping[str, str]) -> Optional[KubernetesInfo]:
    if not is_kubernetes(environ): return None
    return KubernetesInfo(
        namespace=environ["K8S_NAMESPACE"],
        pod_name=environ["K8S_POD_NAME"],
        pod_ip=environ.get("K8S_POD_IP", ""),
        node_name=environ.get("K8S_NODE_NAME", ""),
        service_host=environ.get("KUBERNETES_SERVICE_HOST", ""),
        service_port=environ.get("KUBERNETES_SERVICE_PORT", ""),
        labels=_prefixed(environ, "K8S_LABEL_"),
        annotations=_prefixed(environ, "K8S_ANNOTATION_"),
    )

# ----------------------------- Assembler -----------------------------

class ResponseAssembler:
    """Builds one immutable RequestSnapshot per request."""

    def __init__(self, settings: Settings, body_decoder: Optional[BodyDecoder] = None,
                 token_extractor: Optional[TokenExtractor] = None,
                 certificate: Optional[CertificateDescriptor] = None):
        self.settings = settings
        self.body_decoder = body_decoder or BodyDecoder(settings.max_body_size)
        self.token_extractor = token_extractor or TokenExtractor(settings.jwt_header_names)
        self.certificate = certificate
        self.hostname = socket.gethostname()
        self.host_address = host_address()

    def server_info(self) -> ServerInfo:
        return ServerInfo(hostname=self.hostname, host_address=self.host_address,
                          environment=environment_subset(self.settings), tls=self.certificate)

    def assemble(self, method: str, path: str, query: str, headers: Mapping[str, str],
                 body: bytes = b"", content_type: str = "", peer: Optional[str] = None,
                 response_encoding: str = "", tls: Optional[RequestTLSInfo] = None) -> RequestSnapshot:
        lookup = Headers(list(headers.items()))
        method = method.upper()
        body_info = None
        if method in BODY_METHODS and body:
            body_info = self.body_decoder.parse_body(body, content_type)
        request = RequestInfo(
            method=method, path=path, query=query, headers=dict(headers),
            remote_address=remote_address(lookup, peer),
            body=body_info,
            cookies=parse_cookies(lookup.get("Cookie", "")),
            compression=compression_info(lookup, response_encoding),
            tls=tls,
        )
        return RequestSnapshot(
            request=request,
            server=self.server_info(),
            kubernetes=kubernetes_info(self.settings.environ),
            jwt_tokens=self.token_extractor.extract_tokens(lookup),
        )
