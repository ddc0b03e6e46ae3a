"""
Logging setup for Attesta.

Two pieces:

    StructuredFormatter   one JSON object per log line
    AuditLogger           typed security events on the ``attesta.audit`` logger

Audit fields travel on the record as ``record.audit`` and are merged into
the JSON line. A per-context request id, when set, is stamped on every line.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

request_id_var: ContextVar[str] = ContextVar("attesta_request_id", default="")

AUDIT_LOGGER_NAME = "attesta.audit"

SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}


class StructuredFormatter(logging.Formatter):
    """Render records as compact JSON for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        created = time.gmtime(record.created)
        entry: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%S", created) + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        request_id = request_id_var.get()
        if request_id:
            entry["request_id"] = request_id

        audit = getattr(record, "audit", None)
        if audit:
            entry.update(audit)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str, separators=(",", ":"))


class AuditLogger:
    """
    Security audit trail for account operations.

    Accounts and credential ids are passed as hex strings. Every event
    carries ``event_type``; the remaining keys depend on the event.
    """

    def __init__(self, name: str = AUDIT_LOGGER_NAME):
        self._logger = logging.getLogger(name)

    def event(self, level: int, event_type: str, message: str, **fields: Any) -> None:
        self._logger.log(
            level,
            "%s: %s",
            event_type,
            message,
            extra={"audit": {"event_type": event_type, **fields}},
        )

    # Authorization

    def authorization_attempt(
        self, account: str, credential_id: str, nonce: int, amount: Optional[int] = None
    ) -> None:
        self.event(
            logging.INFO, "AUTHORIZATION_ATTEMPT", f"nonce {nonce} presented",
            account=account, credential_id=credential_id, nonce=nonce, amount=amount,
        )

    def authorization_decision(
        self, account: str, outcome: str, nonce: int, error: Optional[str] = None
    ) -> None:
        """ALLOWED is logged at INFO; anything else at WARNING."""
        level = logging.INFO if outcome == "ALLOWED" else logging.WARNING
        self.event(
            level, "AUTHORIZATION_DECISION", outcome,
            account=account, outcome=outcome, nonce=nonce, error=error,
        )

    def replay_rejected(self, account: str, stored_nonce: int, presented_nonce: int) -> None:
        self.event(
            logging.WARNING, "REPLAY_REJECTED", f"nonce {presented_nonce} <= {stored_nonce}",
            account=account, stored_nonce=stored_nonce, presented_nonce=presented_nonce,
        )

    # Account administration

    def policy_replaced(self, account: str, policy_type: str, caller: str) -> None:
        self.event(
            logging.INFO, "POLICY_REPLACED", policy_type,
            account=account, policy_type=policy_type, caller=caller,
        )

    def credential_added(self, account: str, credential_id: str, name: str = "") -> None:
        self.event(
            logging.INFO, "CREDENTIAL_ADDED", credential_id,
            account=account, credential_id=credential_id, name=name,
        )

    def credential_removed(self, account: str, credential_id: str) -> None:
        self.event(
            logging.INFO, "CREDENTIAL_REMOVED", credential_id,
            account=account, credential_id=credential_id,
        )

    def credential_toggled(self, account: str, credential_id: str, enabled: bool) -> None:
        state = "enabled" if enabled else "disabled"
        self.event(
            logging.INFO, "CREDENTIAL_TOGGLED", f"{credential_id} {state}",
            account=account, credential_id=credential_id, enabled=enabled,
        )

    def security_event(self, event: str, severity: str = "medium", **details: Any) -> None:
        """Unknown severities log at WARNING."""
        self.event(
            SEVERITY_LEVELS.get(severity, logging.WARNING), "SECURITY_EVENT", event,
            security_event=event, severity=severity, **details,
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None,
) -> None:
    """
    Replace the root handlers with a stderr handler (and a file handler when
    ``log_file`` is given), formatted as JSON or plain text.
    """
    if json_format:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)-8s %(name)s  %(message)s")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level.upper(), handlers=handlers, force=True)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (a fresh UUID4 when omitted) to the current context."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    return request_id_var.get()


audit_log = AuditLogger()
