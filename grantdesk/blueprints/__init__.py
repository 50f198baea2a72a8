"""
GrantDesk
Blueprint registry and request helpers shared by the record blueprints.
"""

from flask import Response, g, request

from grantdesk.services.status_lifecycle import allowed_targets
from grantdesk.utils.errors import E, api_error


def signature_request():
    """Read ``{slot, version, observation}``; returns (values, err_response)."""
    data = request.get_json(silent=True) or {}
    missing = [k for k in ("slot", "version") if data.get(k) in (None, "")]
    if missing:
        return None, api_error(
            E.VALIDATION_REQUIRED,
            "Le créneau de signature et la version sont obligatoires",
            details={k: "required" for k in missing},
        )
    try:
        version = int(data["version"])
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "version doit être un entier")
    return {"slot": data["slot"], "version": version, "observation": data.get("observation")}, None


def status_request():
    """Read ``{status, version}``; returns (values, err_response)."""
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return None, api_error(E.VALIDATION_REQUIRED, "Le statut est obligatoire")
    version = data.get("version")
    try:
        version = None if version in (None, "") else int(version)
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, "version doit être un entier")
    return {"status": data["status"], "version": version}, None


def record_dict(record) -> dict:
    """Record JSON plus the status moves open to the current user."""
    body = record.to_dict()
    body["allowed_statuses"] = allowed_targets(record, g.current_user)
    return body


def download(content: bytes, filename: str, mimetype: str) -> Response:
    return Response(
        content,
        mimetype=mimetype,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
