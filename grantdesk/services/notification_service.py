"""
Pending-work derivation — which signable records await the current user.

Derived on every call from the records themselves; nothing is cached or
stored.  The same rule applies to every signable record type.
"""

import logging
from typing import Iterable, Optional

from grantdesk.core.approvals import (
    ACCOUNTANT,
    GRANT_COORDINATOR,
    NATIONAL_COORDINATOR,
    SlotId,
    normalize_profession,
)
from grantdesk.models.finance import SIGNABLE_MODELS

logger = logging.getLogger(__name__)


def _awaits(approvals, profession: str) -> bool:
    if profession == GRANT_COORDINATOR:
        return not approvals.is_signed(SlotId.SUPERVISOR1)
    if profession == ACCOUNTANT:
        return not approvals.is_signed(SlotId.SUPERVISOR2)
    if profession == NATIONAL_COORDINATOR:
        return (
            approvals.is_signed(SlotId.SUPERVISOR1)
            and approvals.is_signed(SlotId.SUPERVISOR2)
            and not approvals.is_signed(SlotId.FINAL_APPROVAL)
        )
    return False


def pending_for_profession(
    entities: Iterable,
    profession: Optional[str],
    grant_id: Optional[int] = None,
) -> list:
    """Records whose next signature belongs to ``profession``.

    Grant Coordinator: supervisor1 unsigned.  Accountant: supervisor2
    unsigned.  National Coordinator: both supervisors signed and
    finalApproval unsigned.  Any other profession gets an empty list.
    """
    profession = normalize_profession(profession)
    return [
        e for e in entities
        if (grant_id is None or e.grant_id == grant_id) and _awaits(e.get_approvals(), profession)
    ]


def pending_summary(user, grant_id: Optional[int] = None) -> dict:
    """Pending records for ``user`` across every signable type.

    Returns ``{"total": n, "by_module": {module: {"count", "items"}}}``.
    """
    by_module = {}
    total = 0
    for module, model in SIGNABLE_MODELS.items():
        query = model.query
        if grant_id is not None:
            query = query.filter(model.grant_id == grant_id)
        pending = pending_for_profession(query.order_by(model.id).all(), user.profession)
        by_module[module] = {
            "count": len(pending),
            "items": [
                {"id": e.id, "number": e.number, "amount": e.amount, "status": e.status}
                for e in pending
            ],
        }
        total += len(pending)
    logger.debug("Pending work for user=%s: %d", user.id, total)
    return {"total": total, "by_module": by_module}
