"""HTTP yield source.

Fetches per-pool APY from a JSON endpoint of the form
``{base_url}/{pool_id}/apy`` returning ``{"apy": 0.055, ...}``.
"""

import asyncio
import threading
from typing import List, Optional

import requests

from yield_rebalancer.data.base import YieldSource
from yield_rebalancer.data.validation import YieldValidator
from yield_rebalancer.utils.exceptions import FetchError
from yield_rebalancer.utils.logging import get_logger

logger = get_logger(__name__)


class HttpYieldSource(YieldSource):
    """Yield source backed by a REST endpoint.

    ``requests`` is blocking, so each fetch runs on a worker thread with its
    own session; the engine fans the fetches out concurrently.

    Example:
        >>> source = HttpYieldSource("https://api.example.com", timeout=10)
        >>> await source.fetch("uniswap")
        0.05
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        apy_field: str = "apy",
    ):
        """Initialize HTTP yield source.

        Args:
            base_url: Root URL of the yield API
            api_key: Optional bearer token sent with every request
            timeout: Per-request timeout in seconds
            apy_field: JSON field holding the APY fraction
        """
        if not base_url:
            raise ValueError("base_url is required for HttpYieldSource")

        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.apy_field = apy_field

        # requests.Session is not thread-safe; one per worker thread
        self._local = threading.local()
        self._sessions: List[requests.Session] = []
        self._sessions_lock = threading.Lock()

        logger.debug("HttpYieldSource initialized (base_url: %s)", self.base_url)

    def _get_session(self) -> requests.Session:
        if not hasattr(self._local, "session"):
            session = requests.Session()
            if self.api_key:
                session.headers["Authorization"] = f"Bearer {self.api_key}"
            session.headers["Accept"] = "application/json"
            self._local.session = session
            with self._sessions_lock:
                self._sessions.append(session)
        return self._local.session

    def url_for(self, pool_id: str) -> str:
        return f"{self.base_url}/{pool_id}/apy"

    def _fetch_sync(self, pool_id: str) -> float:
        url = self.url_for(pool_id)
        try:
            response = self._get_session().get(url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise FetchError(f"Failed to fetch yield for {pool_id}: {e}", pool=pool_id) from e
        except ValueError as e:
            raise FetchError(
                f"Invalid JSON in yield response for {pool_id}: {e}", pool=pool_id
            ) from e

        if not isinstance(payload, dict) or payload.get(self.apy_field) is None:
            raise FetchError(
                f"Yield response for {pool_id} has no '{self.apy_field}' field",
                pool=pool_id,
            )

        return YieldValidator.validate(payload[self.apy_field], pool_id)

    async def fetch(self, pool_id: str) -> float:
        return await asyncio.to_thread(self._fetch_sync, pool_id)

    async def close(self) -> None:
        """Close every worker-thread session."""
        with self._sessions_lock:
            sessions, self._sessions = self._sessions, []
        for session in sessions:
            session.close()
        self._local = threading.local()
        logger.debug("HttpYieldSource closed %d session(s)", len(sessions))
