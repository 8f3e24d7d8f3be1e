# Overview: Third-party payment verification client (Paystack) behind a swappable seam.

"""
Payment verification.

verify(reference, expected_amount_cents) asks the provider whether a payment
reference settled successfully for exactly the expected amount. Amounts are
compared in minor units (Paystack reports kobo/cents), so no float math is
involved.

The active verifier is stored on the app (app.extensions) so tests and
alternative providers can replace it with set_verifier().
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from flask import current_app

from ..errors import PaymentVerificationFailed

_EXT_KEY = "commerce.payment_verifier"


@dataclass(frozen=True)
class VerificationResult:
    verified: bool
    amount_cents: int | None = None
    provider_status: str | None = None
    reference: str | None = None


class PaystackVerifier:
    def __init__(
        self,
        *,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Accept": "application/json",
            },
        )

    def verify(self, reference: str, expected_amount_cents: int) -> VerificationResult:
        """
        Raises PaymentVerificationFailed when the provider cannot be reached or
        answers with something unparseable. A reachable provider that says
        "not paid" or reports a different amount yields verified=False.
        """
        if not self.secret_key:
            raise PaymentVerificationFailed("Payment verification is not configured")

        try:
            with self._client() as client:
                response = client.get(f"/transaction/verify/{reference}")
            if response.status_code == 404:
                return VerificationResult(verified=False, reference=reference, provider_status="not_found")
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as exc:
            current_app.logger.warning("Payment verification request failed for %s: %s", reference, exc)
            raise PaymentVerificationFailed("Payment verification failed") from exc
        except ValueError as exc:
            raise PaymentVerificationFailed("Payment provider returned an invalid response") from exc

        data = body.get("data") or {}
        provider_status = data.get("status")
        amount = data.get("amount")
        if not isinstance(amount, int) or isinstance(amount, bool):
            amount = None

        verified = bool(body.get("status")) and provider_status == "success" and amount == expected_amount_cents
        return VerificationResult(
            verified=verified,
            amount_cents=amount,
            provider_status=provider_status,
            reference=reference,
        )


def build_default_verifier(app) -> PaystackVerifier:
    return PaystackVerifier(
        secret_key=app.config.get("PAYSTACK_SECRET_KEY", ""),
        base_url=app.config.get("PAYSTACK_BASE_URL", "https://api.paystack.co"),
        timeout=app.config.get("PAYMENT_VERIFY_TIMEOUT", 10.0),
    )


def get_verifier():
    verifier = current_app.extensions.get(_EXT_KEY)
    if verifier is None:
        verifier = build_default_verifier(current_app)
        current_app.extensions[_EXT_KEY] = verifier
    return verifier


def set_verifier(app, verifier) -> None:
    app.extensions[_EXT_KEY] = verifier


def requires_verification(method: str) -> bool:
    methods = current_app.config.get("VERIFIED_PAYMENT_METHODS", frozenset())
    return (method or "").strip().lower() in methods


def verify_payment(reference: str, expected_amount_cents: int) -> None:
    """
    Raise PaymentVerificationFailed unless the provider confirms the exact
    amount. Performs no database work.
    """
    result = get_verifier().verify(reference, expected_amount_cents)
    if not result.verified:
        raise PaymentVerificationFailed(
            "Invalid payment reference",
            reference=reference,
            provider_status=result.provider_status,
            provider_amount_cents=result.amount_cents,
        )
