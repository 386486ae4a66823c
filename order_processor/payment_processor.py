"""
Simulated payment gateway.

Every random draw comes from a generator seeded with (seed, order_id), so a
given order always gets the same outcome, latency and payment reference.
Redelivered or concurrently processed copies of a work item therefore settle
identically.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

from order_processor.config import Settings
from order_processor.metrics import PAYMENT_OUTCOMES

logger = logging.getLogger(__name__)

PAYMENT_ID_PREFIX = "PAY-"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PaymentError(Exception):
    """Base class for payment errors."""


class PaymentDeclinedError(PaymentError):
    """Definitively declined by the gateway. An expected business outcome."""


class PaymentTimeoutError(PaymentError):
    """Gateway did not answer within the budget. Transient."""


# ---------------------------------------------------------------------------
# Policies
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentDecision:
    approved: bool
    reason: str | None = None


@dataclass(frozen=True)
class PaymentReference:
    payment_id: str
    order_id: str
    amount: Decimal


def order_rng(seed: int, order_id: str, purpose: str) -> random.Random:
    return random.Random(f"{purpose}:{seed}:{order_id}")


def payment_reference(order_id: str, seed: int = 0) -> str:
    return f"{PAYMENT_ID_PREFIX}{order_rng(seed, order_id, 'reference').getrandbits(64):016X}"


class PaymentPolicy(Protocol):
    def decide(self, order_id: str, amount: Decimal) -> PaymentDecision: ...


class AlwaysApprovePolicy:
    def decide(self, order_id: str, amount: Decimal) -> PaymentDecision:
        return PaymentDecision(approved=True)


class AlwaysDeclinePolicy:
    def __init__(self, reason: str = "Insufficient funds") -> None:
        self.reason = reason

    def decide(self, order_id: str, amount: Decimal) -> PaymentDecision:
        return PaymentDecision(approved=False, reason=self.reason)


class SeededRatePolicy:
    """Approves roughly success_rate of orders; the same order always gets the same answer."""

    def __init__(self, success_rate: float, seed: int = 0) -> None:
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self.seed = seed

    def decide(self, order_id: str, amount: Decimal) -> PaymentDecision:
        if order_rng(self.seed, order_id, "decision").random() < self.success_rate:
            return PaymentDecision(approved=True)
        return PaymentDecision(approved=False, reason="Insufficient funds")


class AmountLimitPolicy:
    def __init__(self, limit: Decimal) -> None:
        self.limit = limit

    def decide(self, order_id: str, amount: Decimal) -> PaymentDecision:
        if amount > self.limit:
            return PaymentDecision(approved=False, reason=f"Amount exceeds card limit of {self.limit}")
        return PaymentDecision(approved=True)


# ---------------------------------------------------------------------------
# Simulator
# ---------------------------------------------------------------------------


class PaymentSimulator:
    def __init__(
        self,
        policy: PaymentPolicy,
        seed: int = 0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        timeout: float | None = None,
    ) -> None:
        self.policy = policy
        self.seed = seed
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.timeout = timeout

    def _latency(self, order_id: str) -> float:
        if self.max_latency <= 0:
            return 0.0
        return order_rng(self.seed, order_id, "latency").uniform(self.min_latency, self.max_latency)

    async def _call_gateway(self, order_id: str) -> None:
        latency = self._latency(order_id)
        if not latency:
            return
        logger.debug(
            "Calling payment gateway",
            extra={"order_id": order_id, "simulated_latency_s": round(latency, 2)},
        )
        try:
            await asyncio.wait_for(asyncio.sleep(latency), timeout=self.timeout)
        except asyncio.TimeoutError:
            PAYMENT_OUTCOMES.labels("timeout").inc()
            raise PaymentTimeoutError(f"Gateway did not respond within {self.timeout}s")

    async def charge(self, order_id: str, amount: Decimal) -> PaymentReference:
        """Settle amount for order_id; raises PaymentDeclinedError on decline."""
        await self._call_gateway(order_id)

        decision = self.policy.decide(order_id, amount)
        if not decision.approved:
            PAYMENT_OUTCOMES.labels("declined").inc()
            logger.warning(
                "Payment declined",
                extra={"order_id": order_id, "amount": str(amount), "reason": decision.reason},
            )
            raise PaymentDeclinedError(decision.reason or "Payment declined")

        reference = PaymentReference(
            payment_id=payment_reference(order_id, self.seed),
            order_id=order_id,
            amount=amount,
        )
        PAYMENT_OUTCOMES.labels("success").inc()
        logger.info(
            "Payment succeeded",
            extra={"order_id": order_id, "amount": str(amount), "payment_id": reference.payment_id},
        )
        return reference


def build_simulator(settings: Settings) -> PaymentSimulator:
    policies = {
        "approve": lambda: AlwaysApprovePolicy(),
        "decline": lambda: AlwaysDeclinePolicy(),
        "seeded": lambda: SeededRatePolicy(settings.payment_success_rate, seed=settings.payment_seed),
        "amount-limit": lambda: AmountLimitPolicy(settings.payment_amount_limit),
    }
    try:
        policy = policies[settings.payment_policy]()
    except KeyError:
        raise ValueError(f"Unknown payment policy: {settings.payment_policy!r}") from None
    return PaymentSimulator(
        policy,
        seed=settings.payment_seed,
        min_latency=settings.payment_min_latency,
        max_latency=settings.payment_max_latency,
        timeout=settings.payment_timeout,
    )
