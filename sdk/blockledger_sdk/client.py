"""
Block Ledger client for the Python SDK.

This module provides the main client interface:
- LedgerClient: HTTP connection to a ledger host
- Signer / LocalSigner: identity capability used for submissions

Example:
    >>> async with LedgerClient("http://localhost:8545", signer=LocalSigner("0xabc")) as ledger:
    ...     receipt = await ledger.append("Test Name", 100)
    ...     record = await ledger.get(receipt.id)

Invariants:
    - Mutations are authorized by the signer before any request is sent
    - Transport failures and timeouts surface as UnavailableError
    - Server error codes map onto the SDK error types one to one
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Callable, Iterable, Protocol, TypeVar, runtime_checkable

import httpx

from .errors import (
    LedgerError,
    OutOfRangeError,
    RejectedError,
    UnavailableError,
    ValidationError,
)
from .models import CommitMetadata, Notification, Receipt, Record

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
DEFAULT_PAGE_SIZE = 500

T = TypeVar("T")


@runtime_checkable
class Signer(Protocol):
    """Identity capability for submissions.

    The signer supplies the submitting address and decides whether an
    action may go ahead. A declined action never reaches the ledger.
    """

    @property
    def address(self) -> str: ...

    def authorize(self, action: str) -> bool: ...


class LocalSigner:
    """Signer backed by a fixed address.

    Args:
        address: Identity recorded as the creator of appended blocks
        allowed_actions: If set, only these actions are authorized
    """

    def __init__(self, address: str, allowed_actions: Iterable[str] | None = None) -> None:
        self._address = address
        self._allowed = frozenset(allowed_actions) if allowed_actions is not None else None

    @property
    def address(self) -> str:
        return self._address

    def authorize(self, action: str) -> bool:
        return self._allowed is None or action in self._allowed


def _raise_for_error(response: httpx.Response) -> None:
    """Map an error response onto the SDK error types."""
    if response.is_success:
        return

    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    message = body.get("error") or f"HTTP {response.status_code}"
    code = body.get("error_code")
    details = body.get("details") or {}

    if code == "OUT_OF_RANGE":
        raise OutOfRangeError(message, details.get("id"), details.get("block_count"))
    if code == "REJECTED":
        raise RejectedError(message, creator=details.get("creator"))
    if code == "INVALID_ARGUMENT":
        raise ValidationError(message)
    if code == "UNAVAILABLE" or response.status_code >= 500:
        raise UnavailableError(message, address=str(response.request.url))
    raise LedgerError(message, code=code, details=details)


def _decode(response: httpx.Response, parse: Callable[[Any], T]) -> T:
    """Parse a success body; a malformed one is treated as an unavailable ledger."""
    try:
        return parse(response.json())
    except (KeyError, ValueError, TypeError, AttributeError) as e:
        raise UnavailableError(
            f"Malformed response from {response.request.url.path}: {e!r}",
            address=str(response.request.url),
        ) from e


def _parse_page(data: dict[str, Any]) -> tuple[list[Notification], int, int]:
    page = [Notification.from_dict(n) for n in data["notifications"]]
    return page, int(data["next"]), int(data["end"])


class LedgerClient:
    """Client for a Block Ledger host.

    Provides the ledger contract (append, get, count), the notification
    stream (replay and live subscription) and commit metadata lookup.

    Example:
        >>> async with LedgerClient("http://localhost:8545") as ledger:
        ...     count = await ledger.count()
        ...     async for notification in ledger.replay():
        ...         print(notification.id)
    """

    def __init__(
        self,
        base_url: str,
        *,
        signer: Signer | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        page_size: int = DEFAULT_PAGE_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize client.

        Args:
            base_url: Ledger host URL (e.g. http://localhost:8545)
            signer: Identity used for submissions (reads need none)
            timeout: Per-request timeout in seconds
            page_size: Notifications requested per replay page
            transport: Optional httpx transport (testing, custom routing)
        """
        self.base_url = base_url.rstrip("/")
        self.signer = signer
        self.timeout = timeout
        self.page_size = page_size
        self._transport = transport
        self._http: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        if self._http is not None:
            return
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> LedgerClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            raise UnavailableError("Client is not connected", address=self.base_url)
        return self._http

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise UnavailableError(f"Request to {path} timed out: {e}", address=self.base_url) from e
        except httpx.TransportError as e:
            raise UnavailableError(f"Request to {path} failed: {e}", address=self.base_url) from e

        return response

    def _creator_for(self, action: str) -> str:
        if self.signer is None:
            raise RejectedError("A signer is required to submit", action=action)
        if not self.signer.authorize(action):
            raise RejectedError(
                f"Signer declined {action}", action=action, creator=self.signer.address
            )
        return self.signer.address

    async def _submit(self, action: str, path: str, body: dict[str, Any]) -> Receipt:
        creator = self._creator_for(action)
        response = await self._request("POST", path, json=body, headers={"X-Creator": creator})
        _raise_for_error(response)

        receipt = _decode(response, Receipt.from_dict)
        logger.debug(
            "Block submitted",
            extra={"action": action, "id": receipt.id, "tx_id": receipt.tx_id},
        )
        return receipt

    async def append(self, name: str, sum: int) -> Receipt:
        """Append a block.

        Raises:
            RejectedError: If the signer or the ledger declines the submission
            UnavailableError: If the ledger cannot be reached
        """
        return await self._submit("append", "/v1/blocks", {"name": name, "sum": sum})

    async def append_name_only(self, name: str) -> Receipt:
        """Append a block with sum 0."""
        return await self._submit("append_name_only", "/v1/blocks/name", {"name": name})

    async def append_sum_of_two(self, a: int, b: int) -> Receipt:
        """Append a block with an empty name and sum a + b."""
        return await self._submit("append_sum_of_two", "/v1/blocks/sum", {"a": a, "b": b})

    async def get(self, block_id: int) -> Record:
        """Get a block by id.

        Raises:
            OutOfRangeError: If block_id >= count()
            UnavailableError: If the ledger cannot be reached
        """
        response = await self._request("GET", f"/v1/blocks/{block_id}")
        _raise_for_error(response)
        return _decode(response, Record.from_dict)

    async def count(self) -> int:
        response = await self._request("GET", "/v1/blocks/count")
        _raise_for_error(response)
        return _decode(response, lambda data: int(data["count"]))

    async def notifications(self, start: int = 0, limit: int | None = None) -> list[Notification]:
        """Fetch one page of the notification stream."""
        page, _, _ = await self._notification_page(start, limit or self.page_size)
        return page

    async def _notification_page(
        self, start: int, limit: int
    ) -> tuple[list[Notification], int, int]:
        response = await self._request(
            "GET", "/v1/notifications", params={"start": start, "limit": limit}
        )
        _raise_for_error(response)
        return _decode(response, _parse_page)

    async def replay(self, start: int = 0) -> AsyncIterator[Notification]:
        """Yield notifications from start up to the end of the stream as of this call."""
        page, position, end = await self._notification_page(start, self.page_size)

        while True:
            for notification in page:
                if notification.seq >= end:
                    return
                yield notification
            if not page or position >= end:
                return
            page, position, _ = await self._notification_page(position, self.page_size)

    async def subscribe(self, start: int | None = None) -> AsyncIterator[Notification]:
        """Yield notifications as the ledger emits them.

        Args:
            start: Stream position to start from (current end if None)

        Raises:
            UnavailableError: If the connection fails or drops
        """
        params = {"start": start} if start is not None else {}
        timeout = httpx.Timeout(self.timeout, read=None)

        try:
            async with self.http.stream(
                "GET", "/v1/notifications/live", params=params, timeout=timeout
            ) as response:
                if not response.is_success:
                    await response.aread()
                    _raise_for_error(response)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        notification = Notification.from_dict(json.loads(line))
                    except (KeyError, ValueError, TypeError, AttributeError) as e:
                        raise UnavailableError(
                            f"Malformed notification on live subscription: {e!r}",
                            address=self.base_url,
                        ) from e
                    yield notification

        except httpx.TimeoutException as e:
            raise UnavailableError(f"Live subscription timed out: {e}", address=self.base_url) from e
        except httpx.TransportError as e:
            raise UnavailableError(f"Live subscription dropped: {e}", address=self.base_url) from e

    async def get_commit(self, tx_id: str) -> CommitMetadata | None:
        """Commit metadata for a transaction, or None if it is not known."""
        response = await self._request("GET", f"/v1/commits/{tx_id}")
        if response.status_code == 404:
            return None
        _raise_for_error(response)
        return _decode(response, CommitMetadata.from_dict)

    async def get_commits(self, tx_ids: Iterable[str]) -> dict[str, CommitMetadata]:
        """Commit metadata for many transactions; unknown ones are absent."""
        wanted = list(dict.fromkeys(tx_ids))
        if not wanted:
            return {}

        response = await self._request("POST", "/v1/commits/batch", json={"tx_ids": wanted})
        _raise_for_error(response)
        return _decode(
            response,
            lambda data: {t: CommitMetadata.from_dict(c) for t, c in data["commits"].items()},
        )

    async def stats(self) -> dict[str, Any]:
        response = await self._request("GET", "/v1/stats")
        _raise_for_error(response)
        return response.json()

    async def health(self) -> dict[str, Any]:
        response = await self._request("GET", "/v1/health")
        if response.status_code == 503:
            return response.json()
        _raise_for_error(response)
        return response.json()
