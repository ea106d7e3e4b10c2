import logging
import sqlite3

from db import atomic, current_time, format_timestamp
from errors import EntityNotFound, ValidationFailed
from statuses import Severity

logger = logging.getLogger(__name__)


def serialize_alert(row):
    alert = dict(row)
    alert["resolved"] = bool(alert["resolved"])
    return alert


def create_alert(
    conn,
    title,
    message,
    severity=Severity.INFO,
    entity_type=None,
    entity_id=None,
    kind=None,
    subject=None,
    now=None,
):
    """Append an alert row. Callers do their own duplicate checks."""
    cursor = conn.execute(
        """
        INSERT INTO alerts (title, message, severity, entity_type, entity_id, kind, subject, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            title,
            message,
            Severity(severity).value,
            getattr(entity_type, "value", entity_type),
            entity_id,
            getattr(kind, "value", kind),
            subject,
            format_timestamp(current_time(now)),
        ),
    )
    return cursor.lastrowid


def emit_alert(conn, title, message, **fields):
    """Create an alert in its own savepoint; a failed write is logged, never raised."""
    try:
        conn.execute("SAVEPOINT emit_alert")
    except sqlite3.Error:
        logger.exception("Could not record alert %r", title)
        return None
    try:
        alert_id = create_alert(conn, title, message, **fields)
    except sqlite3.Error:
        logger.exception("Could not record alert %r", title)
        conn.execute("ROLLBACK TO SAVEPOINT emit_alert")
        conn.execute("RELEASE SAVEPOINT emit_alert")
        return None
    conn.execute("RELEASE SAVEPOINT emit_alert")
    return alert_id


def find_unresolved_alert(conn, entity_type, entity_id, kind, subject=None):
    return conn.execute(
        """
        SELECT *
        FROM alerts
        WHERE entity_type = ? AND entity_id = ? AND kind = ? AND subject IS ? AND resolved = 0
        ORDER BY id DESC
        LIMIT 1
        """,
        (
            getattr(entity_type, "value", entity_type),
            entity_id,
            getattr(kind, "value", kind),
            subject,
        ),
    ).fetchone()


def emit_alert_once(conn, title, message, entity_type, entity_id, kind, subject=None, **fields):
    """Emit an alert unless an unresolved one with the same key is still open."""
    if find_unresolved_alert(conn, entity_type, entity_id, kind, subject) is not None:
        return None
    return emit_alert(
        conn,
        title,
        message,
        entity_type=entity_type,
        entity_id=entity_id,
        kind=kind,
        subject=subject,
        **fields,
    )


def get_alert(conn, alert_id):
    row = conn.execute("SELECT * FROM alerts WHERE id = ?", (alert_id,)).fetchone()
    if row is None:
        raise EntityNotFound("alert", alert_id)
    return row


def resolve_alert(conn, alert_id, note="", now=None):
    with atomic(conn):
        alert = get_alert(conn, alert_id)
        if alert["resolved"]:
            raise ValidationFailed(["Alert already resolved."], message="Alert already resolved.")
        conn.execute(
            "UPDATE alerts SET resolved = 1, resolved_at = ?, resolution_note = ? WHERE id = ?",
            (format_timestamp(current_time(now)), note or "", alert_id),
        )
        logger.info("Alert %s resolved", alert_id)
        return serialize_alert(get_alert(conn, alert_id))


def unresolve_alert(conn, alert_id):
    with atomic(conn):
        alert = get_alert(conn, alert_id)
        if not alert["resolved"]:
            raise ValidationFailed(["Alert is not resolved."], message="Alert is not resolved.")
        conn.execute(
            "UPDATE alerts SET resolved = 0, resolved_at = NULL, resolution_note = NULL WHERE id = ?",
            (alert_id,),
        )
        logger.info("Alert %s reopened", alert_id)
        return serialize_alert(get_alert(conn, alert_id))


def list_alerts(conn, severity=None, entity_type=None, resolved=None, limit=20):
    clauses = []
    params = []
    if severity:
        clauses.append("severity = ?")
        params.append(Severity(severity).value)
    if entity_type:
        clauses.append("entity_type = ?")
        params.append(entity_type)
    if resolved is not None:
        clauses.append("resolved = ?")
        params.append(1 if resolved else 0)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = conn.execute(
        f"SELECT * FROM alerts {where} ORDER BY created_at DESC, id DESC LIMIT ?",
        (*params, limit),
    ).fetchall()
    return [serialize_alert(row) for row in rows]
