"""
Transfer Provider Integration.

Moves payout funds to a vendor's connected account. The payout flow only
sees the TransferProvider interface; HttpTransferProvider talks to a
JSON-over-HTTP transfer API:

    POST {TRANSFER_API_URL}/transfers
    Authorization: Bearer {TRANSFER_API_KEY}
    Idempotency-Key: payout_<id>

    {"amount": 9800, "currency": "usd", "destination": "acct_123",
     "transfer_group": "payout_17", "metadata": {...}}

Amounts are sent in minor units (cents). A transfer ends in exactly one of
succeeded, failed or timed_out; timed_out is handled like a failure.
"""
import httpx
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from commission_engine.config import Settings, get_settings
from commission_engine.exceptions import TransferError

logger = logging.getLogger(__name__)


class TransferOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class TransferResult:
    """Result of one transfer attempt."""
    outcome: TransferOutcome
    reference: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == TransferOutcome.SUCCEEDED


class TransferProvider(ABC):
    """Abstract transfer rail interface."""

    @abstractmethod
    async def create_transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        metadata: Dict[str, Any],
        idempotency_key: str,
    ) -> TransferResult:
        """Send amount to destination. Must not raise for a declined transfer."""
        pass

    @abstractmethod
    async def is_destination_connected(self, vendor_id: int) -> bool:
        """Whether the vendor has a connected account that can receive funds."""
        pass

    @abstractmethod
    async def get_destination(self, vendor_id: int) -> Optional[str]:
        """Connected account id of the vendor, or None."""
        pass


def to_minor_units(amount: Decimal) -> int:
    """9.80 -> 980"""
    return int((Decimal(str(amount)) * 100).to_integral_value())


class HttpTransferProvider(TransferProvider):
    """
    Transfer provider backed by an HTTP transfer API.

    Usage:
        provider = HttpTransferProvider(settings, destinations={7: "acct_7"})
        result = await provider.create_transfer("acct_7", Decimal("98.00"), "usd", {...}, "payout_1")
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        destinations: Optional[Dict[int, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = config or get_settings()
        self.base_url = self.settings.TRANSFER_API_URL.rstrip("/")
        self.api_key = self.settings.TRANSFER_API_KEY
        self.timeout = self.settings.TRANSFER_TIMEOUT_SECONDS
        self.destinations: Dict[int, str] = dict(destinations or {})
        self._client = client

    def connect(self, vendor_id: int, account_id: str) -> None:
        """Register a vendor's connected account."""
        self.destinations[vendor_id] = account_id

    async def is_destination_connected(self, vendor_id: int) -> bool:
        return bool(self.destinations.get(vendor_id))

    async def get_destination(self, vendor_id: int) -> Optional[str]:
        return self.destinations.get(vendor_id)

    async def create_transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        metadata: Dict[str, Any],
        idempotency_key: str,
    ) -> TransferResult:
        if not self.base_url:
            raise TransferError("TRANSFER_API_URL is not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key,
        }
        payload = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "destination": destination,
            "transfer_group": idempotency_key,
            "metadata": metadata,
        }
        url = f"{self.base_url}/transfers"

        try:
            if self._client is not None:
                response = await self._client.post(url, headers=headers, json=payload, timeout=self.timeout)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, headers=headers, json=payload, timeout=self.timeout)
        except httpx.TimeoutException as e:
            logger.error(f"Transfer {idempotency_key} timed out after {self.timeout}s: {e}")
            return TransferResult(
                outcome=TransferOutcome.TIMED_OUT,
                error_message=f"Transfer timed out after {self.timeout}s",
            )
        except httpx.HTTPError as e:
            logger.error(f"Transfer {idempotency_key} failed: {e}")
            return TransferResult(outcome=TransferOutcome.FAILED, error_message=str(e))

        if response.status_code >= 400:
            logger.error(f"Transfer API error: {response.status_code} - {response.text}")
            return TransferResult(
                outcome=TransferOutcome.FAILED,
                error_message=self._error_message(response),
            )

        data = response.json() if response.text else {}
        reference = data.get("id")
        logger.info(f"Transfer {reference} created for {destination} ({payload['amount']} {payload['currency']})")
        return TransferResult(outcome=TransferOutcome.SUCCEEDED, reference=reference)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            return error.get("message") or f"HTTP {response.status_code}"
        if isinstance(data, dict) and data.get("message"):
            return data["message"]
        return f"HTTP {response.status_code}"
