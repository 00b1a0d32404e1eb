"""
Payment Provider Gateway — QRIS charges and status lookups.

Two operations, two error modes:
    charge(order_id, amount, payer) -> ChargeResult   (QR payload)
    get_status(order_id)            -> ProviderStatus (raw provider state)

    ProviderUnavailable — network error, timeout, provider 5xx
    ProviderRejected    — provider refused or returned a malformed answer

Implementations:
    MidtransGateway   — Midtrans Core API over httpx
    SimulatedGateway  — in-memory provider for SIMULATION_MODE and tests

The provider's status vocabulary never leaves this module except through
map_provider_status().
"""
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

from config import settings
from domain.constants import QR_ACTION_NAME
from domain.enums import OrderStatus
from domain.errors import ProviderRejected, ProviderUnavailable
from utils.clock import utcnow

logger = logging.getLogger(__name__)


# ════════════════════════════════════════════════════════════════════
# Provider vocabulary
# ════════════════════════════════════════════════════════════════════

SETTLED_STATES = frozenset({"settlement", "capture", "accept"})
FAILED_STATES = frozenset({"deny", "cancel", "expire", "failure"})


def map_provider_status(transaction_status: Optional[str]) -> Optional[OrderStatus]:
    """
    Map a provider transaction_status onto the order state machine.

    Returns None when the provider state implies no change (e.g. "pending").
    """
    state = (transaction_status or "").strip().lower()
    if state in SETTLED_STATES:
        return OrderStatus.SUCCESS
    if state in FAILED_STATES:
        return OrderStatus.FAILED
    return None


# ════════════════════════════════════════════════════════════════════
# Data carried across the boundary
# ════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class PayerInfo:
    name: str
    email: str


@dataclass(frozen=True)
class ChargeResult:
    qr_payload: str
    transaction_id: Optional[str] = None
    transaction_status: Optional[str] = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class ProviderStatus:
    transaction_status: str
    transaction_id: Optional[str] = None
    payment_type: Optional[str] = None
    qr_payload: Optional[str] = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)


def extract_qr_url(payload: dict) -> Optional[str]:
    """Find the QR image URL in a Midtrans `actions` list."""
    for action in payload.get("actions") or []:
        if action.get("name") == QR_ACTION_NAME and action.get("url"):
            return action["url"]
    return None


class PaymentGateway(ABC):
    """Boundary to the external QR-payment provider."""

    name = "gateway"

    @abstractmethod
    async def charge(self, order_id: str, amount: int, payer: PayerInfo) -> ChargeResult:
        ...

    @abstractmethod
    async def get_status(self, order_id: str) -> ProviderStatus:
        ...

    async def aclose(self) -> None:
        """Release network resources (no-op by default)."""
        return None


# ════════════════════════════════════════════════════════════════════
# Midtrans Core API
# ════════════════════════════════════════════════════════════════════


class MidtransGateway(PaymentGateway):
    """
    Midtrans Core API adapter.

    Midtrans answers most calls with HTTP 200 and puts the real outcome in
    the body's `status_code` string, so both layers are checked.
    """

    name = "midtrans"

    def __init__(
        self,
        server_key: str,
        base_url: str,
        acquirer: str = "gopay",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        token = base64.b64encode(f"{server_key}:".encode("utf-8")).decode("ascii")
        self._acquirer = acquirer
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "Authorization": f"Basic {token}",
            },
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderUnavailable(f"Midtrans timed out on {path}") from e
        except httpx.TransportError as e:
            raise ProviderUnavailable(f"Midtrans unreachable: {e.__class__.__name__}") from e

        if response.status_code >= 500:
            raise ProviderUnavailable(f"Midtrans returned HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderRejected(f"Midtrans returned non-JSON body (HTTP {response.status_code})") from e
        if not isinstance(body, dict):
            raise ProviderRejected(f"Midtrans returned an unexpected body (HTTP {response.status_code})")

        body_code = str(body.get("status_code", response.status_code))
        if body_code.startswith("5"):
            raise ProviderUnavailable(f"Midtrans reported {body_code}: {body.get('status_message', '')}")
        return body

    async def charge(self, order_id: str, amount: int, payer: PayerInfo) -> ChargeResult:
        payload = {
            "payment_type": "qris",
            "transaction_details": {
                "order_id": order_id,
                "gross_amount": amount,
            },
            "qris": {"acquirer": self._acquirer},
            "customer_details": {
                "first_name": payer.name,
                "email": payer.email,
            },
        }
        body = await self._request("POST", "/v2/charge", json=payload)

        body_code = str(body.get("status_code", ""))
        if not body_code.startswith("2"):
            raise ProviderRejected(
                f"Midtrans refused charge for {order_id}: "
                f"{body_code} {body.get('status_message', '')}".strip(),
                details={"statusCode": body_code},
            )

        qr_url = extract_qr_url(body)
        if not qr_url:
            raise ProviderRejected(f"Midtrans charge for {order_id} carried no QR action")

        logger.info(f"  💳 QRIS charge created: {order_id} (IDR {amount:,})")
        return ChargeResult(
            qr_payload=qr_url,
            transaction_id=body.get("transaction_id"),
            transaction_status=body.get("transaction_status"),
            raw=body,
        )

    async def get_status(self, order_id: str) -> ProviderStatus:
        body = await self._request("GET", f"/v2/{order_id}/status")

        # Expired transactions answer 407 but still carry a transaction_status
        transaction_status = body.get("transaction_status")
        if not transaction_status:
            raise ProviderRejected(
                f"Midtrans has no status for {order_id}: "
                f"{body.get('status_code', '')} {body.get('status_message', '')}".strip(),
                details={"statusCode": str(body.get("status_code", ""))},
            )

        return ProviderStatus(
            transaction_status=transaction_status,
            transaction_id=body.get("transaction_id"),
            payment_type=body.get("payment_type"),
            qr_payload=extract_qr_url(body),
            raw=body,
        )


# ════════════════════════════════════════════════════════════════════
# Simulated provider
# ════════════════════════════════════════════════════════════════════


class SimulatedGateway(PaymentGateway):
    """
    In-memory QRIS provider.

    Charges start in "pending"; set_status() moves them the way a real
    wallet payment (or provider-side expiry) would.
    """

    name = "simulated"

    def __init__(self, qr_base_url: str = "https://simulator.local/qris"):
        self._qr_base_url = qr_base_url.rstrip("/")
        self._transactions: dict[str, dict] = {}

    async def charge(self, order_id: str, amount: int, payer: PayerInfo) -> ChargeResult:
        if amount <= 0:
            raise ProviderRejected(f"Invalid gross_amount {amount} for {order_id}")
        if order_id in self._transactions:
            raise ProviderRejected(f"Order id {order_id} was already charged")

        transaction_id = f"sim-{len(self._transactions) + 1:06d}"
        self._transactions[order_id] = {
            "transaction_id": transaction_id,
            "transaction_status": "pending",
            "gross_amount": amount,
            "payer": payer,
            "qr_version": 1,
            "created_at": utcnow(),
        }
        logger.info(f"  🎮 Simulated QRIS charge: {order_id} (IDR {amount:,})")
        return ChargeResult(
            qr_payload=self._qr_url(order_id),
            transaction_id=transaction_id,
            transaction_status="pending",
        )

    async def get_status(self, order_id: str) -> ProviderStatus:
        txn = self._transactions.get(order_id)
        if txn is None:
            raise ProviderRejected(f"Transaction doesn't exist: {order_id}")
        return ProviderStatus(
            transaction_status=txn["transaction_status"],
            transaction_id=txn["transaction_id"],
            payment_type="qris",
            qr_payload=self._qr_url(order_id),
        )

    def set_status(self, order_id: str, transaction_status: str) -> None:
        """Drive a transaction to a new provider state."""
        txn = self._transactions.get(order_id)
        if txn is None:
            raise ProviderRejected(f"Transaction doesn't exist: {order_id}")
        txn["transaction_status"] = transaction_status
        logger.info(f"  🎮 Simulated status: {order_id} → {transaction_status}")

    def rotate_qr(self, order_id: str) -> str:
        """Issue a fresh QR image URL, as providers do for long-lived charges."""
        txn = self._transactions[order_id]
        txn["qr_version"] += 1
        return self._qr_url(order_id)

    def _qr_url(self, order_id: str) -> str:
        version = self._transactions[order_id]["qr_version"]
        return f"{self._qr_base_url}/{order_id}/qr-code?v={version}"


# ════════════════════════════════════════════════════════════════════
# Singleton
# ════════════════════════════════════════════════════════════════════

_gateway: Optional[PaymentGateway] = None


def build_gateway() -> PaymentGateway:
    """Construct the gateway selected by settings."""
    if settings.simulation_mode:
        return SimulatedGateway()
    return MidtransGateway(
        server_key=settings.midtrans_server_key,
        base_url=settings.midtrans_base_url,
        acquirer=settings.qris_acquirer,
        timeout=settings.provider_timeout_seconds,
    )


def get_gateway() -> PaymentGateway:
    """FastAPI dependency — process-wide gateway instance."""
    global _gateway
    if _gateway is None:
        _gateway = build_gateway()
        logger.info(f"Payment gateway initialized ({_gateway.name})")
    return _gateway


async def close_gateway() -> None:
    global _gateway
    if _gateway is not None:
        await _gateway.aclose()
        _gateway = None
