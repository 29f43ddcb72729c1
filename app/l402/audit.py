# app/l402/audit.py
"""
Audit logging for L402 payment events.

Log format: JSON lines (one event per line)
Log location: Configured via L402_AUDIT_LOG_PATH

Events logged:
- Challenge issued (payment hash, amount, resource)
- Payment settled (payment hash), the first time settlement is observed
- Access granted / denied on protected resources
- Challenge rate limit hit
- Payment backend failures (operation, payment hash)

Proof-of-payment values are never written to the audit log.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    CHALLENGE_ISSUED = "challenge_issued"
    PAYMENT_SETTLED = "payment_settled"
    ACCESS_GRANTED = "access_granted"
    ACCESS_DENIED = "access_denied"
    RATE_LIMITED = "rate_limited"
    BACKEND_ERROR = "backend_error"
    ERROR = "error"


def generate_request_id() -> str:
    """Generate a short request ID for correlating events."""
    return str(uuid.uuid4())[:8]


def get_audit_log_path() -> Path:
    return Path(settings.L402_AUDIT_LOG_PATH)


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """Build the dictionary written as one audit log line."""
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "client_ip": client_ip,
        "data": data
    }


def log_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    client_ip: Optional[str] = None,
    request_id: Optional[str] = None
) -> Optional[str]:
    """
    Append an event to the audit log.

    Write failures are logged and swallowed so auditing never breaks a request.

    Returns:
        The request_id used for this event, or None if nothing was written
    """
    if not settings.L402_AUDIT_ENABLED:
        return None

    event = create_audit_event(
        event_type=event_type,
        data=data,
        client_ip=client_ip,
        request_id=request_id
    )

    try:
        log_path = get_audit_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(json.dumps(event) + "\n")

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    except OSError as e:
        logger.error(f"Failed to write audit event: {e}")
        return None


def log_challenge_issued(
    payment_hash: str,
    amount_sats: int,
    resource: Optional[str] = None,
    client_ip: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.CHALLENGE_ISSUED,
        data={
            "payment_hash": payment_hash,
            "amount_sats": amount_sats,
            "resource": resource,
        },
        client_ip=client_ip
    )


def log_payment_settled(payment_hash: str) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.PAYMENT_SETTLED,
        data={"payment_hash": payment_hash}
    )


def log_access_granted(
    client_ip: str,
    payment_hash: str,
    resource: str
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.ACCESS_GRANTED,
        data={
            "payment_hash": payment_hash,
            "resource": resource,
        },
        client_ip=client_ip
    )


def log_access_denied(
    client_ip: str,
    reason: str,
    resource: str
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.ACCESS_DENIED,
        data={
            "reason": reason,
            "resource": resource,
        },
        client_ip=client_ip
    )


def log_rate_limited(client_ip: str, requests_made: int, limit: int) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.RATE_LIMITED,
        data={
            "requests_made": requests_made,
            "limit": limit,
        },
        client_ip=client_ip
    )


def log_backend_error(
    operation: str,
    error_code: str,
    error_message: str,
    payment_hash: Optional[str] = None
) -> Optional[str]:
    """Log a payment backend failure with enough context to diagnose it."""
    return log_audit_event(
        event_type=AuditEventType.BACKEND_ERROR,
        data={
            "operation": operation,
            "payment_hash": payment_hash,
            "error_code": error_code,
            "error_message": error_message,
        }
    )


def log_error(
    error_type: str,
    error_message: str,
    context: Optional[Dict[str, Any]] = None,
    client_ip: Optional[str] = None
) -> Optional[str]:
    return log_audit_event(
        event_type=AuditEventType.ERROR,
        data={
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        },
        client_ip=client_ip
    )


def read_audit_log(
    max_entries: Optional[int] = 100,
    event_type: Optional[AuditEventType] = None,
    client_ip: Optional[str] = None
) -> list:
    """
    Read entries from the audit log.

    Args:
        max_entries: Maximum number of entries to return, None for all
        event_type: Filter by event type (optional)
        client_ip: Filter by client IP (optional)

    Returns:
        List of audit events (most recent first)
    """
    log_path = get_audit_log_path()
    if not log_path.exists():
        return []

    events = []
    try:
        with open(log_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if event_type and event.get("event_type") != event_type.value:
                    continue
                if client_ip and event.get("client_ip") != client_ip:
                    continue
                events.append(event)
    except OSError as e:
        logger.error(f"Failed to read audit log: {e}")
        return []

    events.reverse()
    return events if max_entries is None else events[:max_entries]


def get_audit_stats() -> Dict[str, Any]:
    """
    Summarise the audit log.

    Returns:
        Dict with event counts per type and the first/last timestamps
    """
    log_path = get_audit_log_path()
    stats: Dict[str, Any] = {
        "total_events": 0,
        "events_by_type": {},
        "first_event": None,
        "last_event": None,
        "log_path": str(log_path),
        "log_exists": log_path.exists(),
    }
    if not stats["log_exists"]:
        return stats

    # read_audit_log returns newest first
    events = read_audit_log(max_entries=None)
    for event in events:
        event_type = event.get("event_type", "unknown")
        stats["events_by_type"][event_type] = stats["events_by_type"].get(event_type, 0) + 1

    stats["total_events"] = len(events)
    if events:
        stats["first_event"] = events[-1].get("timestamp")
        stats["last_event"] = events[0].get("timestamp")
    return stats
