"""
Network interceptor - records XHR/fetch exchanges from a page's response stream
v1.0 - Initial creation

Listens to page.on("response"). The sequence number and timestamp are taken
synchronously when the event fires, so exchanges keep observation order even
though response bodies are read asynchronously.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Set

from apiscout.config import CAPTURE_RESOURCE_TYPES, MAX_BODY_CHARS
from apiscout.session.models import CapturedExchange

logger = logging.getLogger(__name__)


def decode_body(raw: Optional[bytes], limit: int = 0) -> str:
    """Decode a response body as UTF-8; ``limit`` > 0 keeps only the first ``limit`` characters."""
    if not raw:
        return ""
    text = raw.decode("utf-8", errors="replace")
    return text[:limit] if limit else text


class NetworkInterceptor:
    """
    Capture API exchanges the site's own JavaScript fires.

    Args:
        page: Playwright page to listen on
        next_seq: Callable returning the next sequence number
        resource_types: Request resource types to keep (default xhr/fetch)
        url_filter: Optional predicate on the response URL
        max_body_chars: Longer bodies are cut and flagged ``body_truncated`` (0 = keep all)
    """

    def __init__(
        self,
        page,
        next_seq: Optional[Callable[[], int]] = None,
        resource_types: Iterable[str] = CAPTURE_RESOURCE_TYPES,
        url_filter: Optional[Callable[[str], bool]] = None,
        max_body_chars: int = MAX_BODY_CHARS,
    ):
        self._page = page
        self._resource_types = set(resource_types)
        self._url_filter = url_filter
        self._max_body_chars = max_body_chars
        self._local_seq = 0
        self._next_seq = next_seq or self._default_seq
        self._order: List[int] = []                       # seqs in observation order
        self._pending: Dict[int, asyncio.Task] = {}
        self._ready: Dict[int, CapturedExchange] = {}
        self._dropped: Set[int] = set()
        self._emitted = 0                                 # index into _order
        self._listening = False

    def _default_seq(self) -> int:
        seq = self._local_seq
        self._local_seq += 1
        return seq

    @property
    def captured_count(self) -> int:
        """Exchanges observed so far, including ones whose body is still loading."""
        return len(self._order)

    @property
    def pending(self) -> int:
        return sum(1 for task in self._pending.values() if not task.done())

    def start(self) -> None:
        if self._listening:
            return
        self._page.on("response", self._on_response)
        self._listening = True
        logger.debug("NetworkInterceptor started")

    def stop(self) -> None:
        if not self._listening:
            return
        try:
            self._page.remove_listener("response", self._on_response)
        except Exception as e:
            logger.debug(f"Failed to remove response listener: {e}")
        self._listening = False
        for task in self._pending.values():
            if not task.done():
                task.cancel()
        logger.debug("NetworkInterceptor stopped")

    async def aclose(self) -> None:
        """Stop listening and wait for cancelled body reads to finish."""
        self.stop()
        tasks = [task for task in self._pending.values() if not task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _on_response(self, response) -> None:
        try:
            request = response.request
            if request.resource_type not in self._resource_types:
                return
            if self._url_filter and not self._url_filter(response.url):
                return
        except Exception as e:
            logger.debug(f"Interceptor listener error: {e}")
            return

        seq = self._next_seq()
        observed_at = time.time()
        self._order.append(seq)
        self._pending[seq] = asyncio.ensure_future(self._capture(seq, observed_at, response))

    async def _capture(self, seq: int, observed_at: float, response) -> None:
        try:
            request = response.request
            body = ""
            truncated = False
            try:
                body = decode_body(await response.body())
                if self._max_body_chars and len(body) > self._max_body_chars:
                    body = body[:self._max_body_chars]
                    truncated = True
            except Exception as e:
                # Redirects and evicted resources have no body; the record is still kept
                logger.debug(f"No body for {response.url}: {e}")

            self._ready[seq] = CapturedExchange(
                method=request.method,
                url=response.url,
                request_headers=dict(request.headers or {}),
                request_body=request.post_data,
                status=response.status,
                response_headers=dict(response.headers or {}),
                response_body=body,
                timestamp=observed_at,
                resource_type=request.resource_type,
                seq=seq,
                body_truncated=truncated,
            )
            if truncated:
                logger.info(f"Body of #{seq} {response.url} cut to {self._max_body_chars} chars")
            logger.debug(f"Captured #{seq} {request.method} {response.status} {response.url}")
        except Exception as e:
            logger.warning(f"Dropped exchange #{seq}: {e}")
        finally:
            if seq not in self._ready:
                self._dropped.add(seq)

    async def settle(self) -> None:
        """Wait until every observed exchange has its body read."""
        while True:
            tasks = [t for t in self._pending.values() if not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def drain(self) -> List[CapturedExchange]:
        """Return newly completed exchanges in observation order, without gaps."""
        out = []
        while self._emitted < len(self._order):
            seq = self._order[self._emitted]
            if seq in self._dropped:
                self._dropped.discard(seq)
                self._pending.pop(seq, None)
                self._emitted += 1
                continue
            exchange = self._ready.pop(seq, None)
            if exchange is None:
                break
            self._pending.pop(seq, None)
            out.append(exchange)
            self._emitted += 1
        return out

    async def flush(self) -> List[CapturedExchange]:
        await self.settle()
        return self.drain()
