"""Utility functions."""

from commission_engine.utils.audit import field_changes, get_client_ip, log_action
from commission_engine.utils.public_id import generate_public_id

__all__ = [
    "field_changes",
    "generate_public_id",
    "get_client_ip",
    "log_action",
]
