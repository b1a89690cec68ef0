"""
Token extraction - CSRF tokens and JWTs from pages, cookies and JSON bodies
v1.0 - Initial creation
"""

import base64
import json
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

CSRF_META_NAMES = ("csrf-token", "csrf_token", "_csrf", "csrfmiddlewaretoken", "x-csrf-token")
CSRF_INPUT_NAMES = ("csrfmiddlewaretoken", "_csrf", "csrf_token", "authenticity_token", "_token")
CSRF_COOKIE_NAMES = ("csrftoken", "XSRF-TOKEN", "csrf_token", "_csrf")
JWT_JSON_KEYS = ("access_token", "accessToken", "token", "jwt", "id_token")

_META_RE = re.compile(r"<meta\b[^>]*>", re.IGNORECASE)
_INPUT_RE = re.compile(r"<input\b[^>]*>", re.IGNORECASE)
_ATTR_RE = re.compile(r"""([\w:-]+)\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s>]+))""")
_JWT_RE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$")


def _attrs(tag: str) -> Dict[str, str]:
    attrs = {}
    for match in _ATTR_RE.finditer(tag):
        name = match.group(1).lower()
        value = next((g for g in match.groups()[1:] if g is not None), "")
        attrs[name] = value
    return attrs


def csrf_from_html(html: str, names: Iterable[str] = ()) -> Optional[str]:
    """
    Find a CSRF token in <meta> tags or hidden <input> fields.

    Args:
        html: Page source
        names: Extra meta/input names to try first (site-specific)

    Returns:
        Token string or None
    """
    if not html:
        return None
    extra = [n.lower() for n in names if n]
    meta_names = extra + [n.lower() for n in CSRF_META_NAMES]
    input_names = extra + [n.lower() for n in CSRF_INPUT_NAMES]

    metas = [_attrs(tag) for tag in _META_RE.findall(html)]
    for wanted in meta_names:
        for attrs in metas:
            if attrs.get("name", "").lower() == wanted and attrs.get("content"):
                return attrs["content"]

    inputs = [_attrs(tag) for tag in _INPUT_RE.findall(html)]
    for wanted in input_names:
        for attrs in inputs:
            if attrs.get("name", "").lower() == wanted and attrs.get("value"):
                return attrs["value"]
    return None


def csrf_from_cookies(cookies: List[Dict[str, Any]], names: Iterable[str] = ()) -> Optional[str]:
    """Return the first CSRF-looking cookie value (site-specific names first)."""
    by_name = {c.get("name"): c.get("value") for c in cookies}
    for name in list(names) + list(CSRF_COOKIE_NAMES):
        if name and by_name.get(name):
            return by_name[name]
    return None


def looks_like_jwt(value: Any) -> bool:
    return isinstance(value, str) and bool(_JWT_RE.match(value)) and value.count(".") == 2


def jwt_from_json(body: Any, keys: Iterable[str] = ()) -> Optional[str]:
    """Search a decoded JSON body (one level of nesting) for a JWT-shaped value."""
    if not isinstance(body, dict):
        return None
    candidates = list(keys) + list(JWT_JSON_KEYS)
    scopes = [body] + [v for v in body.values() if isinstance(v, dict)]
    for scope in scopes:
        for key in candidates:
            value = scope.get(key)
            if looks_like_jwt(value):
                return value
    return None


def decode_jwt_claims(token: str) -> Dict[str, Any]:
    """
    Decode the JWT payload without verifying the signature.

    Only used to read ``exp``; returns {} for anything that does not decode.
    """
    try:
        payload = token.split(".")[1]
        payload += "=" * (-len(payload) % 4)
        claims = json.loads(base64.urlsafe_b64decode(payload.encode()).decode("utf-8"))
        return claims if isinstance(claims, dict) else {}
    except (IndexError, ValueError, UnicodeDecodeError) as e:
        logger.debug(f"JWT payload not decodable: {e}")
        return {}


def jwt_expiry(token: Optional[str]) -> Optional[float]:
    if not token:
        return None
    exp = decode_jwt_claims(token).get("exp")
    if isinstance(exp, (int, float)):
        return float(exp)
    return None
