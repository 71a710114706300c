"""
Audit trail for identity changes and sessions.

Services and routers report what happened through an AuditSink; the
default sink writes one line per event to the "openvpn_mng.audit" logger,
so operators can route the audit stream separately with ordinary logging
configuration. The sink lives on app.state.audit and can be swapped
(a database-backed sink, a test recorder) without touching callers.

Never pass secrets (passwords, tokens, hashes) as audit details.
"""

import logging
import uuid
from typing import Any, Protocol


class AuditSink(Protocol):
    def log_create(self, actor_id: uuid.UUID | None, entity: str, entity_id: uuid.UUID, details: dict[str, Any] | None = None) -> None: ...

    def log_update(self, actor_id: uuid.UUID | None, entity: str, entity_id: uuid.UUID, details: dict[str, Any] | None = None) -> None: ...

    def log_delete(self, actor_id: uuid.UUID | None, entity: str, entity_id: uuid.UUID) -> None: ...

    def log_login(self, user_id: uuid.UUID, username: str, client_ip: str) -> None: ...

    def log_logout(self, user_id: uuid.UUID, username: str, client_ip: str) -> None: ...


class LoggingAuditSink:
    """AuditSink that writes key=value lines to a logger."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or logging.getLogger("openvpn_mng.audit")

    def _emit(self, action: str, **fields: Any) -> None:
        rendered = " ".join(f"{k}={v}" for k, v in fields.items() if v is not None)
        self._logger.info("action=%s %s", action, rendered)

    def log_create(self, actor_id, entity, entity_id, details=None):
        self._emit("create", actor=actor_id, entity=entity, id=entity_id, details=details)

    def log_update(self, actor_id, entity, entity_id, details=None):
        self._emit("update", actor=actor_id, entity=entity, id=entity_id, details=details)

    def log_delete(self, actor_id, entity, entity_id):
        self._emit("delete", actor=actor_id, entity=entity, id=entity_id)

    def log_login(self, user_id, username, client_ip):
        self._emit("login", user=user_id, username=username, ip=client_ip)

    def log_logout(self, user_id, username, client_ip):
        self._emit("logout", user=user_id, username=username, ip=client_ip)
