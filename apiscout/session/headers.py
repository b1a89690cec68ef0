"""
Header emulation - the header set a site's own XHR calls carry
v1.0 - Initial creation
"""

from typing import Dict, Mapping, Optional

DEFAULT_CHROME_VERSION = "131.0.0.0"


def build_user_agent(chrome_version: str = DEFAULT_CHROME_VERSION, template: str = "") -> str:
    """
    Build a User-Agent string for the given Chrome version.

    If *template* is empty, uses a desktop Chrome on macOS template.
    """
    if not template:
        template = (
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
            "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/{version} Safari/537.36"
        )
    return template.format(version=chrome_version)


def merge_headers(base: Mapping[str, str], overrides: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """
    Merge two header maps; overrides win, names compared case-insensitively.

    An override whose value is None removes the header.
    """
    merged: Dict[str, str] = {}
    names: Dict[str, str] = {}
    for source in (base, overrides or {}):
        for name, value in source.items():
            key = name.lower()
            if key in names:
                del merged[names[key]]
                del names[key]
            if value is None:
                continue
            merged[name] = str(value)
            names[key] = name
    return merged


def build_session_headers(site, auth, user_agent: str, referer: str = "") -> Dict[str, str]:
    """
    Header set for an outbound request made on behalf of a Session.

    Args:
        site: BaseSite providing APP_HEADERS / CSRF_HEADER
        auth: AuthState with the current csrf_token / jwt
        user_agent: User-Agent of the session's browser context
        referer: Optional Referer (defaults to the site's base URL)

    Returns:
        Header dict without Cookie; cookies travel through the context's jar.
    """
    headers = {
        "User-Agent": user_agent,
        "X-Requested-With": "XMLHttpRequest",
        "Accept": "application/json, text/plain, */*",
    }
    if referer or site.BASE_URL:
        headers["Referer"] = referer or site.BASE_URL
    headers = merge_headers(headers, site.APP_HEADERS)
    if auth.csrf_token:
        headers[site.CSRF_HEADER] = auth.csrf_token
    if auth.jwt:
        headers["Authorization"] = f"Bearer {auth.jwt}"
    return headers


def header_value(headers: Mapping[str, str], name: str) -> Optional[str]:
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None
