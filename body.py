# -*- coding: utf-8 -*-

from __future__ import annotations
import base64
import json
import logging
import math
import re
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

from werkzeug.http import parse_options_header
from werkzeug.sansio.multipart import Data, Epilogue, Field, File, MultipartDecoder, NeedData

from models import JSON, BodyDescriptor
from settings import DEFAULT_MAX_BODY_SIZE

log = logging.getLogger(__name__)

# Heuristic, not a contract: >30% control bytes (excluding \t \n \r) means binary.
BINARY_THRESHOLD = 0.3
MIN_PRINTABLE = 0x20
_CONTROL_BYTES = bytes(b for b in range(MIN_PRINTABLE) if b not in (0x09, 0x0A, 0x0D))

_BAD_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")

Parser = Callable[[bytes, Dict[str, str]], JSON]

# ----------------------------- Classification -----------------------------

def _utf8(data: bytes) -> Optional[str]:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None

def is_binary(data: bytes) -> bool:
    if not data: return False
    if b"\x00" in data: return True
    if _utf8(data) is None: return True
    control = len(data) - len(data.translate(None, _CONTROL_BYTES))
    return control / len(data) > BINARY_THRESHOLD

def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")

def media_type(content_type: str) -> Tuple[str, Dict[str, str]]:
    """Lower-cased media type without parameters, plus lower-cased parameter names."""
    if not content_type: return "", {}
    value, options = parse_options_header(content_type)
    return value.strip().lower(), {k.lower(): v for k, v in options.items()}

# ----------------------------- Type parsers -----------------------------
# Each raises ValueError when it cannot make sense of the input; the caller
# then falls back to the raw text. None is a valid result (JSON null).

def _reject_constant(name: str):
    raise ValueError(f"non-standard JSON constant {name}")

def _finite_float(s: str) -> float:
    f = float(s)
    if not math.isfinite(f):
        raise ValueError(f"number out of range: {s}")
    return f

def load_json(text: str) -> JSON:
    """Strict json.loads: no NaN/Infinity and no numbers that overflow to them."""
    return json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)

def parse_json(data: bytes, params: Dict[str, str]) -> JSON:
    return load_json(data.decode("utf-8"))

def parse_xml(data: bytes, params: Dict[str, str]) -> JSON:
    # Arbitrary XML has no generic tree shape; shown as text.
    return data.decode("utf-8")

def parse_form(data: bytes, params: Dict[str, str]) -> JSON:
    text = data.decode("utf-8")
    if _BAD_PERCENT.search(text):
        raise ValueError("malformed percent escape")
    grouped: Dict[str, List[str]] = {}
    for k, v in parse_qsl(text, keep_blank_values=True, errors="strict"):
        grouped.setdefault(k, []).append(v)
    return {k: (vs[0] if len(vs) == 1 else vs) for k, vs in grouped.items()}

def parse_multipart(data: bytes, params: Dict[str, str]) -> JSON:
    boundary = params.get("boundary")
    if not boundary:
        raise ValueError("multipart body without boundary")
    decoder = MultipartDecoder(boundary.encode("utf-8"))
    decoder.receive_data(data)
    decoder.receive_data(None)
    out: Dict[str, JSON] = {}
    current = None
    chunks: List[bytes] = []
    while True:
        event = decoder.next_event()
        if isinstance(event, (Field, File)):
            current, chunks = event, []
        elif isinstance(event, Data):
            chunks.append(event.data)
            if not event.more_data and current is not None:
                _store_part(out, current, b"".join(chunks))
                current = None
        elif isinstance(event, Epilogue):
            return out
        elif isinstance(event, NeedData):
            # all input was fed, so a closing boundary never came
            raise ValueError("multipart body ended before the closing boundary")

def _store_part(out: Dict[str, JSON], part, payload: bytes) -> None:
    if not part.name: return
    if isinstance(part, File) and part.filename:
        info: Dict[str, JSON] = {"filename": part.filename, "size": len(payload)}
        if is_binary(payload):
            info["content"] = _b64(payload); info["encoding"] = "base64"
        else:
            info["content"] = payload.decode("utf-8")
        out[part.name] = info
    else:
        out[part.name] = payload.decode("utf-8", errors="replace")

def parse_text(data: bytes, params: Dict[str, str]) -> JSON:
    return data.decode("utf-8")

# ----------------------------- Dispatch -----------------------------

def _is_json(mt: str) -> bool: return mt == "application/json" or mt.endswith("+json")
def _is_xml(mt: str) -> bool: return mt in ("application/xml", "text/xml") or mt.endswith("+xml")
def _is_form(mt: str) -> bool: return mt == "application/x-www-form-urlencoded"
def _is_multipart(mt: str) -> bool: return mt == "multipart/form-data"
def _is_text(mt: str) -> bool: return mt.startswith("text/")

# First matching media type wins; order matters (text/xml before text/*).
PARSERS: List[Tuple[Callable[[str], bool], Parser]] = [
    (_is_json, parse_json),
    (_is_xml, parse_xml),
    (_is_form, parse_form),
    (_is_multipart, parse_multipart),
    (_is_text, parse_text),
]

class BodyDecoder:
    def __init__(self, max_body_size: int = DEFAULT_MAX_BODY_SIZE):
        self.max_body_size = max_body_size if max_body_size > 0 else DEFAULT_MAX_BODY_SIZE

    def parse_body(self, data: bytes, content_type: str = "") -> Optional[BodyDescriptor]:
        """Describe a request body. Never raises; failures degrade to raw text or base64."""
        if not data: return None
        size = len(data)
        truncated = size > self.max_body_size
        if truncated:
            data = data[:self.max_body_size]

        if is_binary(data):
            return BodyDescriptor(content_type, size, _b64(data), is_binary=True, truncated=truncated)

        mt, params = media_type(content_type)
        for matches, parser in PARSERS:
            if not matches(mt): continue
            try:
                content = parser(data, params)
            except (ValueError, RecursionError) as e:
                # UnicodeDecodeError and werkzeug's multipart errors are ValueErrors too
                log.debug("%s body not parseable, keeping raw text: %s", mt, e)
                content = data.decode("utf-8")
            return BodyDescriptor(content_type, size, content, truncated=truncated)
        # Unknown type: non-binary input is valid UTF-8 by now.
        return BodyDescriptor(content_type, size, data.decode("utf-8"), truncated=truncated)
