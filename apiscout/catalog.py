"""
Endpoint catalog - inventory of the API endpoints a discovery run touched
v1.0 - Initial creation

Exchanges are grouped by (method, host, templated path). Path segments that
look like identifiers (numbers, UUIDs, long hex strings) become "{id}", so
/api/items/17 and /api/items/42 land in the same entry.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Set, Tuple
from urllib.parse import parse_qsl, urlparse

_NUMERIC_RE = re.compile(r"^\d+$")
_UUID_RE = re.compile(r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$")
_HEX_RE = re.compile(r"^[0-9a-fA-F]{16,}$")


def template_path(path: str) -> str:
    segments = []
    for segment in (path or "/").split("/"):
        if _NUMERIC_RE.match(segment) or _UUID_RE.match(segment) or _HEX_RE.match(segment):
            segments.append("{id}")
        else:
            segments.append(segment)
    return "/".join(segments) or "/"


@dataclass
class EndpointEntry:
    method: str
    host: str
    path: str
    count: int = 0
    statuses: Set[int] = field(default_factory=set)
    content_types: Set[str] = field(default_factory=set)
    query_params: Set[str] = field(default_factory=set)
    first_seen: float = 0.0
    last_seen: float = 0.0
    sample_url: str = ""

    def add(self, exchange) -> None:
        if self.count == 0:
            self.first_seen = exchange.timestamp
            self.sample_url = exchange.url
        self.count += 1
        self.last_seen = max(self.last_seen, exchange.timestamp)
        self.statuses.add(exchange.status)
        content_type = exchange.content_type.split(";")[0].strip()
        if content_type:
            self.content_types.add(content_type)
        self.query_params.update(name for name, _ in parse_qsl(urlparse(exchange.url).query))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method,
            "host": self.host,
            "path": self.path,
            "count": self.count,
            "statuses": sorted(self.statuses),
            "content_types": sorted(self.content_types),
            "query_params": sorted(self.query_params),
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "sample_url": self.sample_url,
        }


def build_catalog(exchanges: Iterable) -> List[EndpointEntry]:
    """
    Group exchanges into endpoints, ordered by first appearance.

    Args:
        exchanges: CapturedExchange objects in observation order

    Returns:
        List of EndpointEntry
    """
    entries: Dict[Tuple[str, str, str], EndpointEntry] = {}
    for exchange in exchanges:
        parsed = urlparse(exchange.url)
        key = (exchange.method, parsed.netloc, template_path(parsed.path))
        if key not in entries:
            entries[key] = EndpointEntry(*key)
        entries[key].add(exchange)
    return list(entries.values())
