# -*- coding: utf-8 -*-
"""Snapshot and descriptor types produced per request.

Every type renders to the JSON shape clients see via ``to_dict()``: camelCase
keys, optional fields left out when empty.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

# Structural decode result: the generic JSON tree.
JSON = Union[None, bool, int, float, str, List["JSON"], Dict[str, "JSON"]]


def _compact(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v not in (None, "", [], {}, False)}


@dataclass(frozen=True)
class BodyDescriptor:
    content_type: str
    size: int
    content: JSON
    is_binary: bool = False
    truncated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out = _compact({"contentType": self.content_type,
                        "isBinary": self.is_binary, "truncated": self.truncated})
        # parsed content is kept even when falsy ({} or 0 are still content)
        out["content"] = self.content
        out["size"] = self.size
        return out


@dataclass(frozen=True)
class TokenDescriptor:
    raw_token: str
    header: Dict[str, JSON]
    payload: Dict[str, JSON]

    def to_dict(self) -> Dict[str, Any]:
        return {"rawToken": self.raw_token, "header": self.header, "payload": self.payload}


@dataclass(frozen=True)
class CookieDescriptor:
    name: str
    value: str
    domain: str = ""
    path: str = ""
    expires: str = ""
    max_age: int = 0
    http_only: bool = False
    secure: bool = False
    same_site: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out = {"name": self.name, "value": self.value}
        out.update(_compact({"domain": self.domain, "path": self.path, "expires": self.expires,
                             "sameSite": self.same_site, "maxAge": self.max_age,
                             "httpOnly": self.http_only, "secure": self.secure}))
        return out


@dataclass(frozen=True)
class CompressionDescriptor:
    accepted_encodings: Tuple[str, ...] = ()
    response_encoding: str = ""
    supported: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out = _compact({"responseEncoding": self.response_encoding,
                        "acceptedEncodings": list(self.accepted_encodings)})
        out["supported"] = self.supported
        return out


@dataclass(frozen=True)
class CertificateDescriptor:
    subject: str
    issuer: str
    not_before: str
    not_after: str
    serial_number: str
    dns_names: Tuple[str, ...] = ()
    enabled: bool = True

    def to_dict(self) -> Dict[str, Any]:
        out = _compact({"subject": self.subject, "issuer": self.issuer,
                        "notBefore": self.not_before, "notAfter": self.not_after,
                        "serialNumber": self.serial_number, "dnsNames": list(self.dns_names)})
        out["enabled"] = self.enabled
        return out


@dataclass(frozen=True)
class RequestTLSInfo:
    enabled: bool
    version: str = ""
    cipher: str = ""

    def to_dict(self) -> Dict[str, Any]:
        out = _compact({"version": self.version, "cipher": self.cipher})
        out["enabled"] = self.enabled
        return out


@dataclass(frozen=True)
class RequestInfo:
    method: str
    path: str
    headers: Mapping[str, str]
    remote_address: str
    query: str = ""
    body: Optional[BodyDescriptor] = None
    cookies: Tuple[CookieDescriptor, ...] = ()
    compression: Optional[CompressionDescriptor] = None
    tls: Optional[RequestTLSInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"method": self.method, "path": self.path,
                               "headers": dict(self.headers), "remoteAddress": self.remote_address}
        if self.query: out["query"] = self.query
        if self.body is not None: out["body"] = self.body.to_dict()
        if self.cookies: out["cookies"] = [c.to_dict() for c in self.cookies]
        if self.compression is not None: out["compression"] = self.compression.to_dict()
        if self.tls is not None: out["tls"] = self.tls.to_dict()
        return out


@dataclass(frozen=True)
class ServerInfo:
    hostname: str
    environment: Mapping[str, str]
    host_address: str = ""
    tls: Optional[CertificateDescriptor] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"hostname": self.hostname, "environment": dict(self.environment)}
        if self.host_address: out["hostAddress"] = self.host_address
        if self.tls is not None: out["tls"] = self.tls.to_dict()
        return out


@dataclass(frozen=True)
class KubernetesInfo:
    namespace: str
    pod_name: str
    pod_ip: str = ""
    node_name: str = ""
    service_host: str = ""
    service_port: str = ""
    labels: Mapping[str, str] = field(default_factory=dict)
    annotations: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"namespace": self.namespace, "podName": self.pod_name}
        out.update(_compact({"podIp": self.pod_ip, "nodeName": self.node_name,
                             "serviceHost": self.service_host, "servicePort": self.service_port,
                             "labels": dict(self.labels), "annotations": dict(self.annotations)}))
        return out


@dataclass(frozen=True)
class RequestSnapshot:
    request: RequestInfo
    server: ServerInfo
    kubernetes: Optional[KubernetesInfo] = None
    jwt_tokens: Mapping[str, TokenDescriptor] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"request": self.request.to_dict(), "server": self.server.to_dict()}
        if self.kubernetes is not None: out["kubernetes"] = self.kubernetes.to_dict()
        if self.jwt_tokens: out["jwtTokens"] = {k: v.to_dict() for k, v in self.jwt_tokens.items()}
        return out
