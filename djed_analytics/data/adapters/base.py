"""
DJED ANALYTICS - Base Chain Data Adapter Interface
All chain-data sources implement "single resource" and "paginated list" fetches.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from djed_analytics.exceptions import ResourceNotFound


class ChainDataAdapter(ABC):
    """Abstract base class for chain-data adapters."""

    def __init__(self, name: str):
        self.name = name
        self._session = None

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection / session."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Clean up connection / session."""
        pass

    @abstractmethod
    async def fetch_one(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Fetch a single resource.

        Raises ResourceNotFound on 404, TransientError once retries are
        exhausted and ChainApiError on any other non-retryable response.
        """
        pass

    @abstractmethod
    async def fetch_paginated(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        take_while: Optional[Callable[[Any], bool]] = None,
    ) -> List[Any]:
        """
        Fetch every page of a list resource until a page comes back empty.

        When `take_while` is given, collection stops at the first item for
        which it returns False and that item is not included.
        """
        pass

    async def block_exists(self, block_hash: str) -> bool:
        """True if the block is still part of the chain. Only a 404 means no."""
        try:
            await self.fetch_one(f"/blocks/{block_hash}")
        except ResourceNotFound:
            return False
        return True

    async def __aenter__(self) -> "ChainDataAdapter":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()
