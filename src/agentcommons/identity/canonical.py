"""
Canonical Payload Encoding

Deterministic byte encoding of JSON-shaped data. This is the wire contract
clients sign against, so it is defined here explicitly rather than left to
``json.dumps`` defaults:

- compact JSON (no whitespace), UTF-8, non-ASCII characters emitted as-is
- object keys sorted by UTF-16 code unit at every nesting level, the order
  ECMAScript clients produce
- integers in plain decimal, limited to the interoperable range ±(2**53 - 1)
- floats rendered the way ECMAScript ``Number.prototype.toString`` renders
  them (``1.0`` -> ``1``, ``1e-7`` -> ``1e-7``, ``1e21`` -> ``1e+21``);
  NaN and infinities are rejected
"""

from __future__ import annotations

import json
import math
from decimal import Decimal
from typing import Any, Mapping

from agentcommons.constants import FIELD_SIGNATURE, MAX_SAFE_INTEGER_FLOAT
from agentcommons.exceptions import CanonicalizationError


def canonicalize(obj: Any) -> bytes:
    """Encode *obj* into its canonical byte form.

    Raises:
        CanonicalizationError: If *obj* contains a value with no canonical
            representation.
    """
    parts: list[str] = []
    _encode(obj, parts)
    try:
        return "".join(parts).encode("utf-8")
    except UnicodeEncodeError:
        raise CanonicalizationError(
            "Strings must be valid Unicode; lone surrogates cannot be signed"
        ) from None


def signable_content(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Return the payload fields covered by its signature."""
    return {k: v for k, v in payload.items() if k != FIELD_SIGNATURE}


def format_number(value: float) -> str:
    """Render a float as ECMAScript ``Number.prototype.toString`` would."""
    if math.isnan(value) or math.isinf(value):
        raise CanonicalizationError("Non-finite numbers cannot be signed")
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    # repr() gives the shortest round-trip digit string, same as ECMAScript.
    _, digits_tuple, exponent = Decimal(repr(abs(value))).normalize().as_tuple()
    digits = "".join(str(d) for d in digits_tuple)
    k = len(digits)
    n = k + exponent  # value == 0.<digits> * 10**n

    if k <= n <= 21:
        body = digits + "0" * (n - k)
    elif 0 < n <= 21:
        body = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        body = "0." + "0" * (-n) + digits
    else:
        e = n - 1
        exp = ("+" if e >= 0 else "-") + str(abs(e))
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        body = mantissa + "e" + exp
    return sign + body


def _utf16_order(key: str) -> bytes:
    return key.encode("utf-16-be", "surrogatepass")


def _encode(obj: Any, out: list[str]) -> None:
    if obj is None:
        out.append("null")
    elif obj is True:
        out.append("true")
    elif obj is False:
        out.append("false")
    elif isinstance(obj, int):
        if abs(obj) >= MAX_SAFE_INTEGER_FLOAT:
            raise CanonicalizationError(
                "Integer values must lie within ±(2**53 - 1); send larger values as strings"
            )
        out.append(str(obj))
    elif isinstance(obj, float):
        out.append(format_number(obj))
    elif isinstance(obj, str):
        out.append(json.dumps(obj, ensure_ascii=False))
    elif isinstance(obj, Mapping):
        if not all(isinstance(key, str) for key in obj):
            raise CanonicalizationError("Object keys must be strings")
        out.append("{")
        first = True
        for key in sorted(obj, key=_utf16_order):
            if not first:
                out.append(",")
            first = False
            out.append(json.dumps(key, ensure_ascii=False))
            out.append(":")
            _encode(obj[key], out)
        out.append("}")
    elif isinstance(obj, (list, tuple)):
        out.append("[")
        for i, item in enumerate(obj):
            if i:
                out.append(",")
            _encode(item, out)
        out.append("]")
    else:
        raise CanonicalizationError(
            f"Values of type {type(obj).__name__} cannot be canonicalized"
        )
