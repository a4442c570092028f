"""Inbound webhook verification and routing, outbound signed callbacks."""

from .callback_client import CallbackClient
from .dispatcher import WebhookDispatcher
from .signature import generate_headers, generate_signature, verify_signature

__all__ = [
    "CallbackClient",
    "WebhookDispatcher",
    "generate_headers",
    "generate_signature",
    "verify_signature",
]
