#!/usr/bin/env python3
# -*- coding: utf-8 -*-

from __future__ import annotations
import datetime
import gzip
import json
import logging
import sys
import threading
import time
import zlib
from pathlib import Path
from typing import Any, List, Optional

from flask import Flask, Response, current_app, g, jsonify, make_response, render_template, request
from werkzeug.serving import make_server

from assembler import ResponseAssembler, SET_COOKIE_HEADER, accepted_encodings, custom_status_code, parse_set_cookie
from body import BodyDecoder
from certs import CertificateError, CertificateProvisioner, ProvisionedCertificate
from metrics import Metrics
from models import RequestTLSInfo
from settings import Settings
from tokens import TokenExtractor

# ----------------------------- Base paths -----------------------------
BASE_DIR = Path(__file__).resolve().parent
SERVICE_VERSION = "1.0.0"

ECHO_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]
HEALTH_PATHS = ("/healthz/live", "/healthz/ready")
QUIET_PATHS = HEALTH_PATHS + ("/metrics",)
# Preferred first.
SUPPORTED_ENCODINGS = ("gzip", "deflate")

log = logging.getLogger("echo_inspector")
access_log = logging.getLogger("echo_inspector.access")

# ----------------------------- Template helpers -----------------------------

def format_jwt_value(value: Any, key: str = "") -> str:
    if key in ("exp", "iat", "nbf") and isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = datetime.datetime.fromtimestamp(int(value), tz=datetime.timezone.utc)
        return f"{int(value)} ({ts.strftime('%a %b %d %H:%M:%S UTC %Y')})"
    if isinstance(value, bool): return "true" if value else "false"
    if isinstance(value, (dict, list)): return json.dumps(value, ensure_ascii=False)
    return str(value)

def format_body_content(content: Any) -> str:
    if isinstance(content, str): return content
    if isinstance(content, (dict, list)): return json.dumps(content, ensure_ascii=False, indent=2)
    return str(content)

# ----------------------------- Negotiation -----------------------------

def negotiate_encoding(accept_encoding: str) -> str:
    """Pick the response encoding we will apply, or empty for identity."""
    refused = set()
    for part in (accept_encoding or "").split(","):
        name, _, params = part.partition(";")
        q = params.strip().lower()
        if q.startswith("q=") and q[2:].strip() in ("0", "0.0", "0.00", "0.000"):
            refused.add(name.strip().lower())
    offered = [e.lower() for e in accepted_encodings(accept_encoding)]
    for enc in SUPPORTED_ENCODINGS:
        if enc in refused: continue
        if enc in offered or "*" in offered: return enc
    return ""

def _wants_html() -> bool:
    return "text/html" in request.headers.get("Accept", "")

def _request_tls() -> Optional[RequestTLSInfo]:
    if not request.is_secure: return None
    sock = request.environ.get("werkzeug.socket")
    version = cipher = ""
    if sock is not None and hasattr(sock, "cipher"):
        version = sock.version() or ""
        c = sock.cipher()
        cipher = c[0] if c else ""
    return RequestTLSInfo(enabled=True, version=version, cipher=cipher)

def _compress(data: bytes, encoding: str) -> bytes:
    if encoding == "gzip": return gzip.compress(data)
    return zlib.compress(data)

# ----------------------------- App factory -----------------------------

def create_app(settings: Optional[Settings] = None,
               certificate: Optional[ProvisionedCertificate] = None) -> Flask:
    settings = settings or Settings.from_env()
    app = Flask(__name__, template_folder=str(BASE_DIR / "templates"))
    app.json.sort_keys = False
    app.add_template_filter(format_jwt_value, "jwt_value")
    app.add_template_filter(format_body_content, "body_content")

    app.extensions["echo"] = {
        "settings": settings,
        "assembler": ResponseAssembler(
            settings,
            body_decoder=BodyDecoder(settings.max_body_size),
            token_extractor=TokenExtractor(settings.jwt_header_names),
            certificate=certificate.descriptor if certificate is not None else None,
        ),
        "metrics": Metrics(),
        "started": time.monotonic(),
    }

    @app.before_request
    def _start():
        g.t0 = time.perf_counter()
        g.encoding = "" if request.path in HEALTH_PATHS else \
            negotiate_encoding(request.headers.get("Accept-Encoding", ""))

    @app.after_request
    def _finish(resp: Response):
        if g.get("encoding") and request.method != "HEAD":
            _apply_compression(resp, g.encoding)
        elapsed = time.perf_counter() - g.get("t0", time.perf_counter())
        ext = current_app.extensions["echo"]
        protocol = "https" if request.is_secure else "http"
        ext["metrics"].observe(request.method, request.path, protocol, elapsed)
        if ext["settings"].log_healthchecks or request.path not in QUIET_PATHS:
            access_log.info("%s - %.3fms %s %s - IP: %s - UA: %s", resp.status_code, elapsed * 1000,
                            request.method, request.path, request.remote_addr,
                            request.headers.get("User-Agent", ""))
        resp.headers["Server"] = "echo-inspector"
        return resp

    # ----------------------------- Endpoints -----------------------------

    @app.route("/healthz/live", methods=["GET", "HEAD"])
    def liveness():
        return Response("OK", mimetype="text/plain")

    @app.route("/healthz/ready", methods=["GET", "HEAD"])
    def readiness():
        ext = current_app.extensions["echo"]
        delay = ext["settings"].readiness_delay_seconds
        if delay > 0 and time.monotonic() - ext["started"] < delay:
            return Response("Service Unavailable", status=503, mimetype="text/plain")
        return Response("OK", mimetype="text/plain")

    @app.route("/metrics", methods=["GET"])
    def metrics():
        body, content_type = current_app.extensions["echo"]["metrics"].render()
        return Response(body, content_type=content_type)

    @app.route("/", defaults={"path": ""}, methods=ECHO_METHODS)
    @app.route("/<path:path>", methods=ECHO_METHODS)
    def echo(path: str):
        status = custom_status_code(request.headers)
        if request.method == "HEAD":
            resp = make_response("", status)
            resp.mimetype = "text/html" if _wants_html() else "application/json"
            return resp

        payload = build_snapshot().to_dict()
        if _wants_html():
            ext = current_app.extensions["echo"]
            raw_json = json.dumps(payload, ensure_ascii=False, indent=2)
            resp = make_response(render_template(
                "echo.html", data=payload, page_title=ext["settings"].page_title,
                version=SERVICE_VERSION, raw_json=raw_json), status)
        else:
            resp = make_response(jsonify(payload), status)
        _set_response_cookie(resp)
        return resp

    return app

# ----------------------------- Builder -----------------------------

def build_snapshot():
    assembler: ResponseAssembler = current_app.extensions["echo"]["assembler"]
    return assembler.assemble(
        method=request.method,
        path=request.path,
        query=request.query_string.decode("utf-8", "replace"),
        headers={k: v for k, v in request.headers.items()},
        body=request.get_data(cache=False, as_text=False) or b"",
        content_type=request.headers.get("Content-Type", ""),
        peer=request.remote_addr,
        response_encoding=g.get("encoding", ""),
        tls=_request_tls(),
    )

def _set_response_cookie(resp: Response) -> None:
    raw = request.headers.get(SET_COOKIE_HEADER, "")
    if not raw: return
    cookie = parse_set_cookie(raw)
    if cookie is None: return
    resp.set_cookie(
        cookie.name, cookie.value,
        max_age=cookie.max_age or None,
        expires=cookie.expires or None,
        path=cookie.path or "/",
        domain=cookie.domain or None,
        secure=cookie.secure,
        httponly=cookie.http_only,
        samesite=cookie.same_site or None,
    )

def _apply_compression(resp: Response, encoding: str) -> None:
    if resp.direct_passthrough or resp.status_code in (204, 304) or "Content-Encoding" in resp.headers:
        return
    data = resp.get_data()
    if not data: return
    resp.set_data(_compress(data, encoding))
    resp.headers["Content-Encoding"] = encoding
    resp.vary.add("Accept-Encoding")

# ----------------------------- Serving -----------------------------

def serve(app: Flask, settings: Settings, certificate: Optional[ProvisionedCertificate] = None) -> None:
    servers = [("HTTP", make_server("0.0.0.0", settings.port, app, threaded=True))]
    if certificate is not None:
        servers.append(("HTTPS", make_server("0.0.0.0", settings.tls_port, app, threaded=True,
                                             ssl_context=certificate.ssl_context())))
    threads: List[threading.Thread] = []
    for label, srv in servers:
        log.info("Echo Server starting %s server on port %s", label, srv.server_port)
        t = threading.Thread(target=srv.serve_forever, name=f"echo-{label.lower()}", daemon=True)
        t.start(); threads.append(t)
    if certificate is not None:
        log.info("Dual-stack servers running - HTTP:%s HTTPS:%s", settings.port, settings.tls_port)
    try:
        for t in threads: t.join()
    except KeyboardInterrupt:
        log.info("Shutting down")
        for _, srv in servers: srv.shutdown()

def main() -> int:
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level,
                        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
                        datefmt="%Y-%m-%d %H:%M:%S")
    # we write our own access lines
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    certificate = None
    if settings.tls_enabled:
        try:
            certificate = CertificateProvisioner().obtain_certificate(settings.tls_cert_file,
                                                                      settings.tls_key_file)
        except CertificateError as e:
            log.error("Failed to get TLS certificate: %s", e)
            return 1
    else:
        log.info("Echo Server starting on port %s (HTTP only)", settings.port)

    serve(create_app(settings, certificate), settings, certificate)
    return 0

if __name__ == "__main__":
    sys.exit(main())
