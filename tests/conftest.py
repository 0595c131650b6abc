"""Test doubles for the payment processor and the confirmation email API."""

import json
from dataclasses import replace
from typing import Awaitable, Callable, Optional

import pytest
from services.ordering_service.stripe_client import (
    InvalidWebhookSignature,
    PaymentIntentInfo,
)

VALID_SIGNATURE = "t=1,v1=test-signature"


class FakeStripe:
    """In-memory stand-in for StripeClient.

    ``queue_statuses`` makes successive retrievals walk through a list of
    statuses; ``on_next_retrieve`` runs a coroutine just before the next
    retrieval returns, which lets tests interleave a webhook with a
    confirmation that is already in flight.
    """

    def __init__(self):
        self.intents: dict[str, PaymentIntentInfo] = {}
        self.created: list[dict] = []
        self.retrievals: list[str] = []
        self._queued: dict[str, list[str]] = {}
        self._on_next_retrieve: Optional[Callable[[str], Awaitable[None]]] = None

    async def create_payment_intent(
        self, amount, currency, payment_method_types, metadata
    ) -> PaymentIntentInfo:
        intent_id = f"pi_test_{len(self.intents) + 1}"
        intent = PaymentIntentInfo(
            id=intent_id,
            status="requires_payment_method",
            amount=amount,
            currency=currency,
            client_secret=f"{intent_id}_secret_abc",
        )
        self.intents[intent_id] = intent
        self.created.append(
            {
                "amount": amount,
                "currency": currency,
                "payment_method_types": payment_method_types,
                "metadata": metadata,
            }
        )
        return intent

    async def retrieve_payment_intent(self, intent_id: str) -> PaymentIntentInfo:
        self.retrievals.append(intent_id)
        if self._on_next_retrieve is not None:
            hook, self._on_next_retrieve = self._on_next_retrieve, None
            await hook(intent_id)
        queued = self._queued.get(intent_id)
        if queued:
            self.set_status(intent_id, queued.pop(0) if len(queued) > 1 else queued[0])
        return self.intents[intent_id]

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        if signature != VALID_SIGNATURE:
            raise InvalidWebhookSignature("Invalid signature")
        return json.loads(payload)

    # -- test controls ------------------------------------------------------

    def add_intent(self, intent_id: str, status: str = "succeeded", amount: int = 0):
        self.intents[intent_id] = PaymentIntentInfo(
            id=intent_id, status=status, amount=amount, currency="eur"
        )

    def set_status(self, intent_id: str, status: str) -> None:
        self.intents[intent_id] = replace(self.intents[intent_id], status=status)

    def queue_statuses(self, intent_id: str, statuses: list[str]) -> None:
        self._queued[intent_id] = list(statuses)

    def on_next_retrieve(self, hook: Callable[[str], Awaitable[None]]) -> None:
        self._on_next_retrieve = hook


class FakeNotifier:
    """Records confirmation emails instead of sending them."""

    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: list[str] = []

    async def send_order_confirmation(self, order, branch=None) -> bool:
        self.sent.append(order.order_number)
        return self.succeed


def stripe_event(event_type: str, obj: dict) -> dict:
    return {"id": f"evt_{event_type}", "type": event_type, "data": {"object": obj}}


@pytest.fixture
def fake_stripe() -> FakeStripe:
    return FakeStripe()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()
