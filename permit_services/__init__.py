"""
Permit services -- orchestration and outbound adapters.

``PermissionWorkflow`` owns transactions and post-commit side effects.
The adapters (Twilio SMS over httpx, Redis pub/sub) implement the kernel's
collaborator protocols.
"""

from permit_services.messages import compose_final_approval_text
from permit_services.realtime import (
    NullRealtimePublisher,
    RedisRealtimePublisher,
    build_realtime_publisher,
    decode_event,
)
from permit_services.sms_gateway import TwilioSmsGateway, request_with_retries, to_e164
from permit_services.workflow import ApproverQueue, PermissionWorkflow, RequesterView

__all__ = [
    "ApproverQueue",
    "NullRealtimePublisher",
    "PermissionWorkflow",
    "RedisRealtimePublisher",
    "RequesterView",
    "TwilioSmsGateway",
    "build_realtime_publisher",
    "compose_final_approval_text",
    "decode_event",
    "request_with_retries",
    "to_e164",
]
