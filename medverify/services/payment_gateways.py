"""
Payment provider adapters.

Each gateway creates the provider-side order for an amount already computed by
the caller. Network or provider failures are raised as ``ProviderError``;
nothing here touches local state.
"""
from dataclasses import dataclass, field
from typing import Dict, Protocol
from urllib.parse import quote, urlencode

import httpx

from medverify.core.config import settings
from medverify.core.errors import ProviderError
from medverify.core.logger import logger
from medverify.core.security import compute_hmac_sha256, constant_time_compare

PLACEHOLDER_CREDENTIALS = {"your_razorpay_key_id", "your_razorpay_key_secret"}


@dataclass(frozen=True)
class RemoteOrder:
    order_id: str
    amount: int
    currency: str
    receipt: str | None = None
    extra: Dict[str, object] = field(default_factory=dict)


class PaymentGateway(Protocol):
    method: str
    name: str
    description: str

    def is_enabled(self) -> bool:
        ...

    async def create_remote_order(self, amount: int, currency: str, receipt: str, metadata: dict) -> RemoteOrder:
        ...


class RazorpayGateway:
    method = "razorpay"
    name = "Razorpay"
    description = "Credit/Debit Cards, NetBanking, UPI, Wallets"

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
        enabled: bool | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.key_secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self.api_url = (api_url or settings.RAZORPAY_API_URL).rstrip("/")
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.enabled = settings.RAZORPAY_ENABLED if enabled is None else enabled
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(
            self.key_id
            and self.key_secret
            and self.key_id not in PLACEHOLDER_CREDENTIALS
            and self.key_secret not in PLACEHOLDER_CREDENTIALS
        )

    def is_enabled(self) -> bool:
        return self.enabled and self.configured

    async def _request(self, method: str, path: str, json: dict | None = None) -> dict:
        if not self.configured:
            raise ProviderError("Payment system not configured. Please contact administrator.")
        try:
            async with httpx.AsyncClient(
                base_url=self.api_url,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.request(method, path, json=json)
        except httpx.TimeoutException:
            logger.error(f"Razorpay {method} {path} timed out after {self.timeout}s")
            raise ProviderError()
        except httpx.HTTPError as e:
            logger.error(f"Razorpay {method} {path} failed: {e}")
            raise ProviderError()

        if response.status_code >= 400:
            try:
                description = response.json().get("error", {}).get("description")
            except ValueError:
                description = response.text[:200]
            logger.error(f"Razorpay {method} {path} returned {response.status_code}: {description}")
            raise ProviderError()
        return response.json()

    async def create_remote_order(self, amount: int, currency: str, receipt: str, metadata: dict) -> RemoteOrder:
        order = await self._request("POST", "/orders", json={
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": {k: str(v) for k, v in metadata.items() if v is not None},
            "payment_capture": 1,
        })
        logger.info(f"Razorpay order created: {order['id']}")
        return RemoteOrder(
            order_id=order["id"],
            amount=order["amount"],
            currency=order["currency"],
            receipt=order.get("receipt", receipt),
            extra={"key": self.key_id},
        )

    async def fetch_payment_details(self, payment_id: str) -> dict:
        return await self._request("GET", f"/payments/{payment_id}")

    def expected_signature(self, order_id: str, payment_id: str) -> str:
        return compute_hmac_sha256(self.key_secret or "", f"{order_id}|{payment_id}")

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self.key_secret:
            return False
        return constant_time_compare(self.expected_signature(order_id, payment_id), signature)


class UpiGateway:
    """Direct UPI intent. The payer completes it in their UPI app; confirmation is manual."""

    method = "upi"
    name = "UPI"
    description = "Direct UPI Payment"

    APP_SCHEMES = {
        "googlepay": "tez://upi/pay?",
        "phonepe": "phonepe://pay?",
        "paytm": "paytmmp://pay?",
    }

    def __init__(self, vpa: str | None = None, merchant_name: str | None = None, enabled: bool | None = None):
        self.vpa = vpa or settings.UPI_VIRTUAL_ADDRESS
        self.merchant_name = merchant_name or settings.UPI_MERCHANT_NAME
        self.enabled = settings.UPI_ENABLED if enabled is None else enabled

    def is_enabled(self) -> bool:
        return bool(self.enabled and self.vpa and self.merchant_name)

    async def create_remote_order(self, amount: int, currency: str, receipt: str, metadata: dict) -> RemoteOrder:
        if not self.vpa:
            raise ProviderError("UPI payments are not configured")

        query = urlencode({
            "pa": self.vpa,
            "pn": self.merchant_name or settings.PROJECT_NAME,
            "am": f"{amount / 100:.2f}",
            "tr": receipt,
            "tn": metadata.get("appointment_type") or f"{settings.PROJECT_NAME} Medical Payment",
            "cu": currency,
        })
        upi_url = f"upi://pay?{query}"
        app_links = {app: scheme + query for app, scheme in self.APP_SCHEMES.items()}
        app_links["bhim"] = upi_url
        app_links["amazonpay"] = upi_url

        return RemoteOrder(
            order_id=receipt,
            amount=amount,
            currency=currency,
            receipt=receipt,
            extra={
                "transaction_id": receipt,
                "amount_display": f"₹{amount / 100:,.0f}",
                "merchant_vpa": self.vpa,
                "merchant_name": self.merchant_name,
                "upi_url": upi_url,
                "qr_code": "https://api.qrserver.com/v1/create-qr-code/?size=200x200&data=" + quote(upi_url, safe=""),
                "app_links": app_links,
            },
        )


def get_gateways() -> Dict[str, PaymentGateway]:
    return {"razorpay": RazorpayGateway(), "upi": UpiGateway()}
