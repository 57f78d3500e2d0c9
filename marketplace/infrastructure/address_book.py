"""Address book collaborator.

Resolves a shopper's saved address into a snapshot at checkout.
"""

from abc import ABC, abstractmethod

import httpx
import structlog

from marketplace.domain.value_objects import Address
from marketplace.infrastructure.config import settings

logger = structlog.get_logger()


class AddressBookError(Exception):
    """Error from the address book service."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"[address-book] {message}")


class AddressBook(ABC):
    """Lookup of saved addresses."""

    @abstractmethod
    async def get_address(self, address_id: str, owner_id: str) -> Address | None:
        """Get an address owned by ``owner_id``, or None."""

    async def close(self) -> None:
        """Release network resources."""


class InMemoryAddressBook(AddressBook):
    """Address book held in memory, keyed by address id."""

    def __init__(self) -> None:
        self._addresses: dict[str, tuple[str, Address]] = {}

    def add(self, owner_id: str, address: Address) -> None:
        self._addresses[address.id] = (owner_id, address)

    async def get_address(self, address_id: str, owner_id: str) -> Address | None:
        entry = self._addresses.get(address_id)
        if entry is None or entry[0] != owner_id:
            return None
        return entry[1]


class HttpAddressBook(AddressBook):
    """Address book service reached over HTTP."""

    def __init__(self, base_url: str, api_key: str | None = None, timeout: float = 5.0) -> None:
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_address(self, address_id: str, owner_id: str) -> Address | None:
        """Fetch an address and check its owner.

        Raises:
            AddressBookError: If the service cannot be reached or errors.
        """
        try:
            client = await self._get_client()
            response = await client.get(f"/addresses/{address_id}")
        except httpx.RequestError as e:
            logger.error("Address book request failed", address_id=address_id, error=str(e))
            raise AddressBookError(f"Request failed: {str(e)}") from e

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise AddressBookError(
                f"Failed to get address: {response.text}", response.status_code
            )

        data = response.json()
        if str(data.get("owner_id")) != owner_id:
            logger.warning("Address owner mismatch", address_id=address_id, owner_id=owner_id)
            return None
        return Address.from_dict(data)


_address_book: AddressBook | None = None


def get_address_book() -> AddressBook:
    """Get the configured address book."""
    global _address_book
    if _address_book is None:
        if settings.address_book_url:
            _address_book = HttpAddressBook(settings.address_book_url, settings.api_key)
        else:
            _address_book = InMemoryAddressBook()
    return _address_book


async def reset_address_book() -> None:
    """Close and forget the global address book."""
    global _address_book
    if _address_book is not None:
        await _address_book.close()
    _address_book = None
