"""
ORACLE WATCHER — Base Feed Adapter Interface
All price feed adapters must implement this interface.
"""
from abc import ABC, abstractmethod
from typing import Dict, Optional

import aiohttp
from pydantic import BaseModel, Field

from oracle_watcher.data.models import MetalPrices


class FeedError(Exception):
    """A price feed could not deliver a usable result."""


class SourceAttempt(BaseModel):
    """Tagged outcome of one source in the fetch chain."""
    ok: bool
    prices: Optional[MetalPrices] = None
    raw_prices: Dict[str, float] = Field(default_factory=dict)
    auxiliary_price: Optional[float] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, prices: MetalPrices, **kwargs) -> "SourceAttempt":
        return cls(ok=True, prices=prices, **kwargs)

    @classmethod
    def failure(cls, error: str) -> "SourceAttempt":
        return cls(ok=False, error=error)


class BaseFeedAdapter(ABC):
    """Abstract base class for all metal price feeds."""

    label: str = "feed"

    def __init__(self, timeout_seconds: float = 10.0, headers: Optional[Dict[str, str]] = None):
        self.timeout_seconds = timeout_seconds
        self._headers = headers or {}
        self._session: Optional[aiohttp.ClientSession] = None

    async def connect(self) -> None:
        """Initialize the HTTP session."""
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        self._session = aiohttp.ClientSession(headers=self._headers, timeout=timeout)

    async def disconnect(self) -> None:
        """Clean up the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    async def session(self) -> aiohttp.ClientSession:
        if not self._session:
            await self.connect()
        return self._session

    @abstractmethod
    async def _fetch(self) -> SourceAttempt:
        """Fetch prices; raise FeedError (or any transport error) on failure."""
        pass

    async def attempt(self) -> SourceAttempt:
        """Run the fetch and tag the outcome instead of raising."""
        try:
            return await self._fetch()
        except FeedError as e:
            return SourceAttempt.failure(str(e))
        except Exception as e:
            reason = str(e) or type(e).__name__
            return SourceAttempt.failure(reason)
