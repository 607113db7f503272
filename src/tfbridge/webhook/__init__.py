"""GitHub webhook handling for the bridge.

This module verifies and parses GitHub webhook deliveries, specifically:
- issues - issue activity (only "opened" is acted on)
- push - branch pushes that trigger a harvest

Parsing functions must only be called after verify_signature accepts the
delivery.
"""

from .handler import (
    branch_from_ref,
    decode_payload,
    extract_installation_id,
    parse_issue_event,
    parse_push_event,
)
from .models import EventType, IssueEvent, PushEvent, WebhookEvent
from .signature import (
    SignatureVerifier,
    compute_signature,
    select_signature_header,
    verify_signature,
)

__all__ = [
    "EventType",
    "IssueEvent",
    "PushEvent",
    "SignatureVerifier",
    "WebhookEvent",
    "branch_from_ref",
    "compute_signature",
    "decode_payload",
    "extract_installation_id",
    "parse_issue_event",
    "parse_push_event",
    "select_signature_header",
    "verify_signature",
]
