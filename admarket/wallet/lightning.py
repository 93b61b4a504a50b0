"""
Lightning backend abstraction for the wallet.

Supports:
- mock: in-memory invoices for development and test mode (no Lightning node)
- lnbits: LNbits REST API for invoice creation, payment and settlement checks
"""

import logging
import random
import secrets
import time
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from admarket.config import settings
from admarket.errors import PaymentError
from admarket.retry import is_retryable, with_retry

logger = logging.getLogger(__name__)


def _transient(exc: BaseException) -> bool:
    """Network and 5xx failures; a malformed LNbits body will not improve on retry."""
    return not isinstance(exc, PaymentError) and is_retryable(exc)


class LightningBackend(ABC):
    """Abstract interface for Lightning operations."""

    name = "abstract"

    @abstractmethod
    async def create_invoice(self, amount_sats: int, description: str = "") -> dict:
        """Create an invoice. Returns {invoice, payment_hash, amount_sats, expires_at}."""

    @abstractmethod
    async def check_invoice_paid(self, payment_hash: str) -> bool:
        """Whether the invoice behind ``payment_hash`` has settled."""

    @abstractmethod
    async def pay_invoice(self, bolt11: str, amount_sats: int | None = None) -> dict:
        """Pay an invoice. Returns {payment_hash, preimage, fee_sats} or raises PaymentError."""


class MockLightningBackend(LightningBackend):
    """
    Mock backend for development and test mode.

    Invoices live in memory; with ``auto_settle`` every invoice reports paid
    as soon as it is checked, and outgoing payments always succeed.
    """

    name = "mock"

    def __init__(self, auto_settle: bool = True):
        self.auto_settle = auto_settle
        self._invoices: dict[str, dict] = {}
        self._paid: set[str] = set()
        self.payments: list[dict] = []

    async def create_invoice(self, amount_sats: int, description: str = "") -> dict:
        payment_hash = secrets.token_hex(32)
        invoice = f"lnbc{amount_sats}n1mock{payment_hash[:40]}"
        expires_at = int(time.time()) + 3600
        self._invoices[payment_hash] = {
            "invoice": invoice,
            "amount_sats": amount_sats,
            "description": description,
            "expires_at": expires_at,
        }
        return {"invoice": invoice, "payment_hash": payment_hash, "amount_sats": amount_sats, "expires_at": expires_at}

    async def check_invoice_paid(self, payment_hash: str) -> bool:
        if payment_hash in self._paid:
            return True
        if self.auto_settle:
            self._paid.add(payment_hash)
            return True
        return False

    async def pay_invoice(self, bolt11: str, amount_sats: int | None = None) -> dict:
        payment_hash = secrets.token_hex(32)
        result = {
            "payment_hash": payment_hash,
            "preimage": secrets.token_hex(32),
            "fee_sats": random.randint(1, 10),
        }
        self.payments.append({"bolt11": bolt11, "amount_sats": amount_sats, **result})
        return result

    def simulate_payment(self, payment_hash: str) -> bool:
        """Mark an invoice as paid (for testing)."""
        if payment_hash in self._invoices:
            self._paid.add(payment_hash)
            return True
        return False


class LNbitsLightningBackend(LightningBackend):
    """LNbits API backend for real Lightning operations."""

    name = "lnbits"

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: float = 30.0):
        self.base_url = (base_url or settings.lnbits_url).rstrip("/")
        self.api_key = api_key or settings.lnbits_api_key
        self.timeout = timeout
        if not self.api_key:
            raise ValueError("LNBITS_API_KEY required when using the lnbits backend")

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, headers={"X-Api-Key": self.api_key}, timeout=self.timeout)

    def _body(self, resp: httpx.Response) -> dict:
        try:
            data = resp.json()
        except ValueError as exc:
            raise PaymentError("Unexpected response from LNbits", details={"backend": self.name, "status": resp.status_code}) from exc
        if not isinstance(data, dict):
            raise PaymentError("Unexpected response from LNbits", details={"backend": self.name, "status": resp.status_code})
        return data

    async def create_invoice(self, amount_sats: int, description: str = "") -> dict:
        payload = {"out": False, "amount": amount_sats, "memo": description or "Ad marketplace deposit", "unit": "sat"}

        async def _call() -> dict:
            async with self._client() as client:
                resp = await client.post("/api/v1/payments", json=payload)
                resp.raise_for_status()
                return self._body(resp)

        try:
            data = await with_retry(_call, retry_on=_transient, operation="lnbits.create_invoice")
            return {
                "invoice": data["payment_request"],
                "payment_hash": data["payment_hash"],
                "amount_sats": amount_sats,
                "expires_at": data.get("expiry"),
            }
        except httpx.HTTPError as exc:
            raise PaymentError("Failed to create invoice", details={"backend": self.name}) from exc
        except KeyError as exc:
            raise PaymentError("Unexpected response from LNbits", details={"backend": self.name, "missing": str(exc)}) from exc

    async def check_invoice_paid(self, payment_hash: str) -> bool:
        async def _call() -> Optional[dict]:
            async with self._client() as client:
                resp = await client.get(f"/api/v1/payments/{payment_hash}")
                if resp.status_code == 404:
                    return None
                resp.raise_for_status()
                return self._body(resp)

        try:
            data = await with_retry(_call, retry_on=_transient, operation="lnbits.check_invoice")
        except httpx.HTTPError as exc:
            raise PaymentError("Failed to check invoice", details={"backend": self.name}) from exc
        return bool(data and data.get("paid", False))

    async def pay_invoice(self, bolt11: str, amount_sats: int | None = None) -> dict:
        # Outgoing payments are not retried; a timeout may still have paid.
        try:
            async with self._client() as client:
                resp = await client.post("/api/v1/payments", json={"out": True, "bolt11": bolt11}, timeout=60)
                resp.raise_for_status()
            data = self._body(resp)
        except httpx.HTTPError as exc:
            raise PaymentError("Payment failed", details={"backend": self.name}) from exc
        if not data.get("payment_hash"):
            raise PaymentError(str(data.get("detail") or "Payment failed"))
        return {"payment_hash": data["payment_hash"], "preimage": data.get("preimage", ""), "fee_sats": data.get("fee", 0)}


_backend_instance: Optional[LightningBackend] = None
_mock_instance: Optional[MockLightningBackend] = None


def get_lightning_backend(test_mode: bool = False) -> LightningBackend:
    """Backend chosen by LIGHTNING_BACKEND (singleton); test mode always gets the mock."""
    global _backend_instance, _mock_instance
    if test_mode or settings.lightning_backend != "lnbits":
        if _mock_instance is None:
            _mock_instance = MockLightningBackend()
        return _mock_instance
    if _backend_instance is None:
        _backend_instance = LNbitsLightningBackend()
        logger.info("Using LNbits backend at %s", _backend_instance.base_url)
    return _backend_instance


def reset_lightning_backend() -> None:
    global _backend_instance, _mock_instance
    _backend_instance = None
    _mock_instance = None
