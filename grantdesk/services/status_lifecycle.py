"""
Status lifecycle for signable records.

Manual status changes allowed per record type:

    payments        pending → rejected, approved → paid, paid → cashed
    prefinancing    pending → rejected, approved → paid, paid → repaid
    engagements     pending → rejected, approved → paid
    employee_loans  pending → rejected, approved → active, active → completed

``rejected`` is reserved to the Coordonnateur National; every later step is
reserved to the Comptable.  ``approved`` is never set by hand: the final
signature is the only way a record becomes approved.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from grantdesk.core.approvals import ACCOUNTANT, NATIONAL_COORDINATOR, normalize_profession
from grantdesk.core.exceptions import PermissionDeniedError, ValidationError
from grantdesk.models import db
from grantdesk.services.permission_service import has_permission, permission_map_for_user
from grantdesk.services.repository import Repository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    source: str
    target: str
    profession: str
    action: str


_REJECT = Transition("pending", "rejected", NATIONAL_COORDINATOR, "approve")
_PAY = Transition("approved", "paid", ACCOUNTANT, "edit")

TRANSITIONS: dict[str, tuple[Transition, ...]] = {
    "payments": (_REJECT, _PAY, Transition("paid", "cashed", ACCOUNTANT, "edit")),
    "prefinancing": (_REJECT, _PAY, Transition("paid", "repaid", ACCOUNTANT, "edit")),
    "engagements": (_REJECT, _PAY),
    "employee_loans": (
        _REJECT,
        Transition("approved", "active", ACCOUNTANT, "edit"),
        Transition("active", "completed", ACCOUNTANT, "edit"),
    ),
}


def find_transition(module: str, source: str, target: str) -> Optional[Transition]:
    for transition in TRANSITIONS.get(module, ()):
        if transition.source == source and transition.target == target:
            return transition
    return None


def allowed_targets(entity, actor) -> list[str]:
    """Statuses ``actor`` may move ``entity`` to right now (for UI menus)."""
    pmap = permission_map_for_user(actor)
    profession = normalize_profession(actor.profession)
    return [
        t.target
        for t in TRANSITIONS.get(entity.MODULE, ())
        if t.source == entity.status
        and t.profession == profession
        and has_permission(pmap, entity.MODULE, t.action)
    ]


def _extra_values(entity, target: str, today: date) -> dict:
    """Guards and side values for specific transitions."""
    if target == "cashed":
        return {"cashed_date": today}
    if target in ("repaid", "completed") and entity.remaining_amount > 0:
        raise ValidationError(
            f"{entity.number} n'est pas entièrement remboursé "
            f"(reste {entity.remaining_amount:.2f})",
            details={"remaining_amount": entity.remaining_amount},
        )
    return {}


def change_status(
    entity,
    new_status: str,
    actor,
    *,
    expected_version: Optional[int] = None,
    today: Optional[date] = None,
):
    """Move a signable record to ``new_status`` on behalf of ``actor``.

    Raises ValidationError for transitions that don't exist and
    PermissionDeniedError when the actor lacks the profession or role action.
    """
    module = entity.MODULE
    if new_status == "approved":
        raise ValidationError(
            "Le statut 'approuvé' est attribué uniquement par la validation finale",
            details={"status": "approved is set by the final signature"},
        )
    transition = find_transition(module, entity.status, new_status)
    if transition is None:
        raise ValidationError(
            f"Transition {entity.status} → {new_status} non autorisée",
            details={"status": new_status},
        )

    if normalize_profession(actor.profession) != transition.profession:
        raise PermissionDeniedError(
            f"Seul le {transition.profession} peut passer ce dossier au statut '{new_status}'",
            module=module,
            action=transition.action,
        )
    if not has_permission(permission_map_for_user(actor), module, transition.action):
        raise PermissionDeniedError(module=module, action=transition.action)

    values = {"status": new_status}
    values.update(_extra_values(entity, new_status, today or date.today()))

    previous = entity.status
    version = entity.version if expected_version is None else expected_version
    Repository(type(entity)).compare_and_swap(entity, version, values)
    db.session.commit()
    logger.info(
        "Status of %s %s changed %s → %s by user=%s",
        module, entity.number, previous, new_status, actor.id,
        extra={"event_type": "status_change", "record": entity.number, "status": new_status},
    )
    return entity
