"""PayPal webhook: transmission signature check and donator badge assignment.

PayPal signs `"<transmission-id>|<transmission-time>|<webhook-id>|<crc32>"`
(crc32 of the raw body, decimal) with the key of the certificate served at
`paypal-cert-url`. Once a delivery is authentic the endpoint always answers
200, even when the badge cannot be stored, so PayPal does not keep retrying a
delivery that will fail the same way again.
"""
from __future__ import annotations

import base64
import binascii
import json
import logging
import zlib
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from urllib.parse import urlparse

import requests
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from slayer_wiki.config import DEFAULT_DONATOR_BADGE, DEFAULT_DONATOR_COLOR
from slayer_wiki.errors import AuthenticationError, ConfigurationError
from slayer_wiki.github.repo import IssueTracker
from slayer_wiki.records.store import format_timestamp

from .registry import DonatorRegistry

logger = logging.getLogger(__name__)

PAYMENT_EVENT_TYPES = frozenset(
    {
        "PAYMENT.SALE.COMPLETED",
        "PAYMENT.CAPTURE.COMPLETED",
        "CHECKOUT.ORDER.COMPLETED",
    }
)
GITHUB_PREFIX = "github:"
SIGNATURE_ALGORITHM = "SHA256withRSA"

CertFetcher = Callable[[str], bytes]


@dataclass(frozen=True, slots=True)
class TransmissionHeaders:
    transmission_id: str | None
    transmission_time: str | None
    transmission_sig: str | None
    cert_url: str | None
    auth_algo: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "TransmissionHeaders":
        lowered = {k.lower(): v for k, v in headers.items()}
        return cls(
            transmission_id=lowered.get("paypal-transmission-id"),
            transmission_time=lowered.get("paypal-transmission-time"),
            transmission_sig=lowered.get("paypal-transmission-sig"),
            cert_url=lowered.get("paypal-cert-url"),
            auth_algo=lowered.get("paypal-auth-algo"),
        )


def expected_message(
    transmission_id: str, transmission_time: str, webhook_id: str, raw_body: bytes
) -> str:
    return f"{transmission_id}|{transmission_time}|{webhook_id}|{zlib.crc32(raw_body)}"


def is_trusted_cert_url(url: str | None) -> bool:
    if not url:
        return False
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    return parsed.scheme == "https" and (host == "paypal.com" or host.endswith(".paypal.com"))


def fetch_certificate(url: str) -> bytes:
    response = requests.get(url, timeout=10)
    response.raise_for_status()
    return response.content


def verify_signature(
    headers: TransmissionHeaders,
    webhook_id: str,
    raw_body: bytes,
    *,
    fetch_cert: CertFetcher = fetch_certificate,
) -> bool:
    if not (
        headers.transmission_id
        and headers.transmission_time
        and headers.transmission_sig
        and headers.cert_url
    ):
        logger.warning("PayPal webhook is missing transmission headers")
        return False
    if headers.auth_algo != SIGNATURE_ALGORITHM:
        logger.warning("Unsupported PayPal signature algorithm: %s", headers.auth_algo)
        return False
    if not is_trusted_cert_url(headers.cert_url):
        logger.warning("Refusing PayPal certificate from untrusted URL: %s", headers.cert_url)
        return False

    message = expected_message(
        headers.transmission_id, headers.transmission_time, webhook_id, raw_body
    )
    try:
        cert = x509.load_pem_x509_certificate(fetch_cert(headers.cert_url))
        signature = base64.b64decode(headers.transmission_sig, validate=True)
        cert.public_key().verify(
            signature, message.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256()
        )
    except InvalidSignature:
        return False
    except (requests.RequestException, binascii.Error, ValueError, TypeError) as error:
        logger.warning("PayPal signature verification error: %s", error)
        return False
    return True


def _clean_username(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if value.startswith(GITHUB_PREFIX):
        value = value[len(GITHUB_PREFIX):].strip()
    if not value or value.lower() == "anonymous":
        return None
    return value


def extract_github_username(resource: Mapping[str, Any]) -> str | None:
    """First usable username from the places PayPal echoes merchant data."""
    related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
    candidates: list[Any] = [resource.get("custom_id"), related.get("custom_id")]
    for unit in resource.get("purchase_units") or []:
        if isinstance(unit, Mapping):
            candidates.append(unit.get("custom_id"))
    candidates += [resource.get("custom"), resource.get("note")]

    for candidate in candidates:
        username = _clean_username(candidate)
        if username:
            return username
    return None


def _amount(resource: Mapping[str, Any]) -> float | None:
    amount = resource.get("amount") or {}
    raw = amount.get("total") or amount.get("value")
    try:
        return float(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


class PayPalWebhookHandler:
    def __init__(
        self,
        *,
        webhook_id: str | None,
        tracker_factory: Callable[[], IssueTracker],
        badge: str = DEFAULT_DONATOR_BADGE,
        color: str = DEFAULT_DONATOR_COLOR,
        fetch_cert: CertFetcher = fetch_certificate,
        now: Callable[[], str] | None = None,
    ) -> None:
        self._webhook_id = webhook_id
        self._tracker_factory = tracker_factory
        self._badge = badge
        self._color = color
        self._fetch_cert = fetch_cert
        self._now = now or (lambda: format_timestamp(datetime.now(timezone.utc)))

    def handle(self, headers: Mapping[str, str], raw_body: bytes) -> dict[str, Any]:
        if not self._webhook_id:
            logger.error("PAYPAL_WEBHOOK_ID not configured")
            raise ConfigurationError("Missing `PAYPAL_WEBHOOK_ID` env var.")

        transmission = TransmissionHeaders.from_headers(headers)
        if not verify_signature(
            transmission, self._webhook_id, raw_body, fetch_cert=self._fetch_cert
        ):
            logger.error(
                "Invalid PayPal webhook signature (transmission %s)",
                transmission.transmission_id,
            )
            raise AuthenticationError("Invalid signature")

        try:
            return self._process(json.loads(raw_body), transmission.transmission_id)
        except Exception:
            logger.exception(
                "PayPal webhook processing failed (transmission %s)",
                transmission.transmission_id,
            )
            return {"success": False, "error": "Internal error"}

    def _process(self, event: Mapping[str, Any], transmission_id: str | None) -> dict[str, Any]:
        event_type = event.get("event_type")
        resource = event.get("resource") or {}
        logger.info("Received PayPal webhook %s (transmission %s)", event_type, transmission_id)

        if event_type not in PAYMENT_EVENT_TYPES:
            return {"success": True, "message": "Event ignored"}

        username = extract_github_username(resource)
        if not username:
            logger.warning("No GitHub username in PayPal payment %s", resource.get("id"))
            return {
                "success": True,
                "message": "Payment received but no GitHub username provided",
            }

        tracker = self._tracker_factory()
        user = tracker.get_user(username)
        status: dict[str, Any] = {
            "isDonator": True,
            "donatedAt": self._now(),
            "badge": self._badge,
            "color": self._color,
            "assignedBy": "paypal-webhook",
            "transactionId": resource.get("id"),
        }
        amount = _amount(resource)
        if amount is not None:
            status["amount"] = amount

        DonatorRegistry(tracker).save_status(username, int(user["id"]), status)
        logger.info("Donator badge assigned to %s", username)
        return {"success": True, "message": "Donator badge assigned", "username": username}
