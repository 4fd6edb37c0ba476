"""
Simulated payment gateway.

Charges always succeed unless the gateway is built with ``fail=True``.
In "async" mode the charge is only authorized and the order waits for a
payment-status webhook to mark it paid.
"""
import logging
import random
import string
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

logger = logging.getLogger(__name__)

PAYMENT_MODES = ("sync", "async")


class PaymentFailed(Exception):
    pass


@dataclass
class PaymentResult:
    transaction_id: str
    settled: bool
    last4: Optional[str] = None
    provider: Optional[str] = None


def new_transaction_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=8))
    return f"txn_{int(time.time() * 1000)}_{suffix}"


class PaymentGateway:
    def __init__(self, mode: str = "sync", fail: bool = False):
        if mode not in PAYMENT_MODES:
            raise ValueError(f"Unknown payment mode: {mode}")
        self.mode = mode
        self.fail = fail

    @property
    def settles_immediately(self) -> bool:
        return self.mode == "sync"

    def charge(self, amount: float, method: dict) -> PaymentResult:
        if self.fail:
            raise PaymentFailed("El pago fue rechazado por la pasarela.")
        result = PaymentResult(
            transaction_id=new_transaction_id(),
            settled=self.settles_immediately,
            last4=method.get("last4"),
            provider=method.get("provider"),
        )
        logger.info("Charged %.2f via %s (%s)", amount, method.get("type"), result.transaction_id)
        return result


def get_payments(request: Request) -> PaymentGateway:
    return request.app.state.payments
