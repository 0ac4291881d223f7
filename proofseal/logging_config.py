"""
Logging for ProofSeal.

Every line is one JSON object so the audit trail can be shipped to a log
store as-is. Audit events never carry key material, secret access codes,
or allowed-viewer lists.
"""

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .util import utc_rfc3339

# Set per HTTP request by the API middleware
request_id_var: ContextVar[str] = ContextVar('request_id', default='')

AUDIT_LOGGER_NAME = "proofseal.audit"

SEVERITY_LEVELS = {
    "low": logging.INFO,
    "medium": logging.WARNING,
    "high": logging.ERROR,
    "critical": logging.CRITICAL,
}

PLAIN_FORMAT = '%(asctime)s %(levelname)-8s %(name)s: %(message)s'


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "ts": utc_rfc3339(created),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            payload["request_id"] = request_id

        audit = getattr(record, "audit", None)
        if audit:
            payload.update(audit)
        else:
            payload["where"] = f"{record.module}.{record.funcName}:{record.lineno}"

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class AuditLogger:
    """
    Emits one structured event per security-relevant action.

    Events go to the ``proofseal.audit`` logger with their fields under
    the record's ``audit`` attribute; fields whose value is None are
    dropped.
    """

    def __init__(self, name: str = AUDIT_LOGGER_NAME):
        self._logger = logging.getLogger(name)

    def _emit(self, level: int, event: str, summary: str, **fields) -> None:
        audit = {"event": event}
        audit.update((k, v) for k, v in fields.items() if v is not None)
        self._logger.log(level, "%s: %s", event, summary, extra={"audit": audit})

    def seal_created(self, seal_object_id: str, owner_identity: str, mode: str) -> None:
        self._emit(
            logging.INFO, "SEAL_CREATED",
            f"seal object {seal_object_id} created ({mode})",
            seal_object_id=seal_object_id, owner_identity=owner_identity, mode=mode,
        )

    def access_decision(
        self,
        seal_object_id: str,
        granted: bool,
        mode: str,
        check: str,
        identity: Optional[str] = None,
        code_presented: bool = False
    ) -> None:
        """Grants log at INFO, denials at WARNING. Only the presence of a code is recorded."""
        verdict = "granted" if granted else "denied"
        self._emit(
            logging.INFO if granted else logging.WARNING, "ACCESS_DECISION",
            f"access {verdict} ({mode}: {check})",
            seal_object_id=seal_object_id, decision=verdict, mode=mode, check=check,
            identity=identity, code_presented=code_presented,
        )

    def integrity_failure(
        self,
        stage: str,
        proof_code: Optional[str] = None,
        content_id: Optional[str] = None
    ) -> None:
        self._emit(
            logging.ERROR, "INTEGRITY_FAILURE",
            f"content failed tamper check at {stage}",
            stage=stage, proof_code=proof_code, content_id=content_id,
        )

    def registration_step(self, draft_id: str, step: str, **details) -> None:
        self._emit(
            logging.DEBUG, "REGISTRATION_STEP",
            f"registration {draft_id} passed {step}",
            draft_id=draft_id, step=step, **details,
        )

    def registration_complete(self, proof_code: str, owner_identity: str, mode: str) -> None:
        self._emit(
            logging.INFO, "REGISTRATION_COMPLETE",
            f"proof {proof_code} registered",
            proof_code=proof_code, owner_identity=owner_identity, mode=mode,
        )

    def registration_failed(self, draft_id: str, step: str, error: str, **partial) -> None:
        """``partial`` is the sanitized draft, so operators can find orphaned blobs and seals."""
        self._emit(
            logging.ERROR, "REGISTRATION_FAILED",
            f"registration {draft_id} stopped at {step}: {error}",
            draft_id=draft_id, step=step, error=error, **partial,
        )

    def anchor_updated(self, proof_code: str, previous_tx_id: str, anchor_tx_id: str) -> None:
        self._emit(
            logging.INFO, "ANCHOR_UPDATED",
            f"anchor for {proof_code} set to {anchor_tx_id}",
            proof_code=proof_code, previous_tx_id=previous_tx_id, anchor_tx_id=anchor_tx_id,
        )

    def security_event(self, event: str, severity: str = "medium", **details) -> None:
        self._emit(
            SEVERITY_LEVELS.get(severity, logging.WARNING), "SECURITY_EVENT",
            event,
            security_event=event, severity=severity, **details,
        )


def _build_handlers(formatter: logging.Formatter, log_file: Optional[str]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)
    return handlers


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Replace the root logger's handlers.

    Args:
        level: Name of the root level, e.g. ``"WARNING"``
        json_format: One JSON object per line; plain text otherwise
        log_file: Also append to this file
    """
    formatter = StructuredFormatter() if json_format else logging.Formatter(PLAIN_FORMAT)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in _build_handlers(formatter, log_file):
        root.addHandler(handler)
    root.setLevel(level.upper())


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind ``request_id`` (or a fresh uuid4) to the current context and return it."""
    request_id = request_id or uuid.uuid4().hex
    request_id_var.set(request_id)
    return request_id


# Shared by components that are not handed their own AuditLogger
audit_log = AuditLogger()
