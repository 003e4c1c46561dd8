"""Payment verification port and adapters.

``OrderService`` calls ``verify`` outside of any unit of work. An adapter
returns a ``PaymentResult`` only when the gateway gave a definite answer;
timeouts and responses it cannot interpret raise ``PaymentAmbiguous`` so the
order stays unpaid.
"""

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import uuid4

import requests

from .errors import PaymentAmbiguous
from .logging import log_event


@dataclass(frozen=True)
class PaymentResult:
    success: bool
    authority: Optional[str] = None
    ref_id: Optional[str] = None
    status: Optional[str] = None
    card_pan: Optional[str] = None
    message: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def to_snapshot(self) -> Dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v not in (None, {}) and k != "success"}
        data["success"] = self.success
        return data


class PaymentGateway(ABC):
    @abstractmethod
    def verify(self, *, authority: str, amount: Decimal) -> PaymentResult:
        ...


class FakeGateway(PaymentGateway):
    """Configurable gateway for development and tests; records every call."""

    def __init__(self) -> None:
        self.should_succeed = True
        self.ambiguous = False
        self.failure_reason = "Payment declined"
        self.calls: List[dict] = []

    def configure(self, should_succeed: bool = True, failure_reason: str = "Payment declined", ambiguous: bool = False) -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.ambiguous = ambiguous

    def verify(self, *, authority: str, amount: Decimal) -> PaymentResult:
        self.calls.append({"method": "verify", "authority": authority, "amount": amount})
        if self.ambiguous:
            raise PaymentAmbiguous("Payment gateway did not answer in time", authority=authority)
        if self.should_succeed:
            return PaymentResult(
                success=True,
                authority=authority,
                ref_id=f"fake_ref_{uuid4().hex[:12]}",
                status="OK",
            )
        return PaymentResult(success=False, authority=authority, status="NOK", message=self.failure_reason)


class ZarinpalGateway(PaymentGateway):
    # 100 = verified now, 101 = already verified earlier
    SUCCESS_CODES = {100, 101}

    def __init__(self, *, merchant_id: str, verify_url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        if not merchant_id:
            raise ValueError("ZARINPAL_MERCHANT_ID is required for the zarinpal gateway")
        self.merchant_id = merchant_id
        self.verify_url = verify_url
        self.timeout = timeout
        self._http = session or requests.Session()

    def verify(self, *, authority: str, amount: Decimal) -> PaymentResult:
        payload = {"merchant_id": self.merchant_id, "amount": int(amount), "authority": authority}
        try:
            response = self._http.post(self.verify_url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as exc:
            log_event("warning", "payment.verify_timeout", authority=authority, timeout=self.timeout)
            raise PaymentAmbiguous("Payment gateway timed out", authority=authority) from exc
        except requests.exceptions.RequestException as exc:
            log_event("warning", "payment.verify_unreachable", exc=exc, authority=authority)
            raise PaymentAmbiguous("Payment gateway unreachable", authority=authority) from exc

        if response.status_code >= 500:
            raise PaymentAmbiguous(f"Payment gateway error: HTTP {response.status_code}", authority=authority)
        try:
            body = response.json()
        except ValueError as exc:
            raise PaymentAmbiguous("Payment gateway returned a non-JSON response", authority=authority) from exc

        data = body.get("data") if isinstance(body, dict) else None
        if isinstance(data, dict) and data.get("code") in self.SUCCESS_CODES:
            return PaymentResult(
                success=True,
                authority=authority,
                ref_id=str(data.get("ref_id")),
                status="OK",
                card_pan=data.get("card_pan"),
                raw=data,
            )
        errors = body.get("errors") if isinstance(body, dict) else None
        if isinstance(errors, dict) and isinstance(errors.get("code"), int):
            return PaymentResult(
                success=False,
                authority=authority,
                status=str(errors["code"]),
                message=errors.get("message"),
                raw=errors,
            )
        raise PaymentAmbiguous("Unrecognised payment gateway response", authority=authority)


def build_gateway(cfg) -> PaymentGateway:
    if cfg.payment_gateway == "zarinpal":
        return ZarinpalGateway(
            merchant_id=cfg.zarinpal_merchant_id,
            verify_url=cfg.zarinpal_verify_url,
            timeout=cfg.payment_gateway_timeout,
        )
    return FakeGateway()
