# -*- coding: utf-8 -*-

from __future__ import annotations
import base64
import binascii
import re
from typing import Dict, Iterable, Mapping, Optional

from body import load_json
from models import JSON, TokenDescriptor
from settings import DEFAULT_JWT_HEADER_NAMES

_BEARER = re.compile(r"^bearer\s+", re.IGNORECASE)
DISPLAY_LIMIT = 30

# ----------------------------- Segment decoding -----------------------------

def b64url_decode(segment: str) -> bytes:
    s = segment.replace("-", "+").replace("_", "/")
    s += "=" * (-len(s) % 4)
    return base64.b64decode(s, validate=True)

def decode_segment(segment: str) -> Optional[Dict[str, JSON]]:
    """base64url -> JSON object, or None when either step fails or it isn't an object."""
    try:
        obj = load_json(b64url_decode(segment).decode("utf-8"))
    except (binascii.Error, ValueError, RecursionError):
        return None
    return obj if isinstance(obj, dict) else None

def display_token(token: str) -> str:
    if len(token) <= DISPLAY_LIMIT: return token
    return token[:10] + "..." + token[-10:]

def strip_bearer(value: str) -> str:
    return _BEARER.sub("", value.strip(), count=1).strip()

def decode_token(token: str) -> Optional[TokenDescriptor]:
    parts = token.split(".")
    if len(parts) != 3 or not all(parts): return None
    header = decode_segment(parts[0])
    if header is None: return None
    payload = decode_segment(parts[1])
    if payload is None: return None
    return TokenDescriptor(raw_token=display_token(token), header=header, payload=payload)

# ----------------------------- Extractor -----------------------------

class TokenExtractor:
    """Finds JWT-shaped values in a configured set of headers and decodes header + payload.

    Signatures are never checked; this is for display only.
    """

    def __init__(self, header_names: Iterable[str] = DEFAULT_JWT_HEADER_NAMES):
        self.header_names = tuple(n.strip() for n in header_names if n and n.strip())

    def extract_tokens(self, headers: Mapping[str, str]) -> Dict[str, TokenDescriptor]:
        found: Dict[str, TokenDescriptor] = {}
        if not headers: return found
        for name in self.header_names:
            value = headers.get(name) or headers.get(name.lower())
            if not value: continue
            info = decode_token(strip_bearer(value))
            if info is not None:
                found[name] = info
        return found
