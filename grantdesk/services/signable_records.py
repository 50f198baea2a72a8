"""
Shared CRUD plumbing for signable records.

Engagements, payments, prefinancings and employee loans differ in their
fields and business checks but are created, edited, deleted, signed and
listed the same way.  The per-record services validate their own fields and
delegate the rest here.

    create   pending status, generated number, draft supervisor signatures
    update   pending and unsigned records only; approvals are never edited
    delete   ``<module>:delete``; locked statuses refused by the model guard
    sign     ApprovalWorkflow.sign under a version compare-and-swap
    status   status_lifecycle.change_status
"""

import logging
from dataclasses import replace
from datetime import date
from typing import Optional

from grantdesk.core.approvals import Approvals
from grantdesk.core.exceptions import ConflictError, ValidationError
from grantdesk.models import db
from grantdesk.services.approval_workflow import WORKFLOWS
from grantdesk.services.listing import filter_records, paginate, sort_records
from grantdesk.services.permission_service import ensure_permission
from grantdesk.services.repository import Repository
from grantdesk.services.status_lifecycle import change_status
from grantdesk.utils.helpers import parse_int

logger = logging.getLogger(__name__)


def next_number(model, on: Optional[date] = None) -> str:
    """Next free ``PREFIX-YYYY-NNNNNN`` number for ``model``."""
    year = (on or date.today()).year
    prefix = f"{model.NUMBER_PREFIX}-{year}-"
    column = getattr(model, model.NUMBER_FIELD)
    existing = db.session.query(column).filter(column.like(f"{prefix}%")).all()
    highest = 0
    for (number,) in existing:
        suffix = number[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:06d}"


def _check_version(entity, expected_version) -> None:
    expected_version = parse_int(expected_version, "version", required=False)
    if expected_version is not None and expected_version != entity.version:
        raise ConflictError(type(entity).__name__, entity.id, expected_version, entity.version)


# ═══════════════════════════════════════════════════════════════
# Read
# ═══════════════════════════════════════════════════════════════
def list_records(
    actor,
    model,
    *,
    search_fields,
    search=None,
    status=None,
    date_value=None,
    grant_id=None,
    extra=None,
    sort="date",
    direction="desc",
    page=1,
    page_size=10,
) -> dict:
    ensure_permission(actor, model.MODULE, "view")
    rows = Repository(model).get_all(grant_id=grant_id)
    rows = filter_records(
        rows,
        search_term=search,
        search_fields=search_fields,
        status=status,
        date_value=date_value,
        extra=extra,
    )
    rows = sort_records(rows, sort, direction)
    return paginate(rows, page, page_size)


def get_record(actor, model, pk):
    ensure_permission(actor, model.MODULE, "view")
    return Repository(model).get(pk)


# ═══════════════════════════════════════════════════════════════
# Write
# ═══════════════════════════════════════════════════════════════
def create_record(actor, model, values: dict, draft_approvals=None):
    """Insert a new pending record; the caller commits.

    ``draft_approvals`` may carry the creator's own supervisor signature.
    Anything else in it is dropped (unsigned slots, ``finalApproval``) or
    refused (a slot the creator could not have signed).
    """
    ensure_permission(actor, model.MODULE, "create")
    workflow = WORKFLOWS[model.MODULE]
    draft = Approvals.from_dict(draft_approvals or {})
    workflow.verify_draft_signers(draft, actor)

    kept = Approvals.from_dict(workflow.approvals_for_create(draft))
    for slot in kept.signed_slots():
        current = kept.get(slot)
        kept = kept.with_slot(
            slot,
            replace(current, name=actor.full_name, date=current.date or date.today().isoformat()),
        )

    values = dict(values)
    values.update(status="pending", approvals=kept.to_dict(), version=1)
    if not values.get(model.NUMBER_FIELD):
        values[model.NUMBER_FIELD] = next_number(model, values.get("date"))
    record = Repository(model).create(values)
    logger.info(
        "%s %s created by user=%s with %d signature(s)",
        model.__name__, record.number, actor.id, len(kept.signed_slots()),
        extra={"event_type": "record_created", "record": record.number},
    )
    return record


def assert_editable(entity) -> None:
    if entity.status != "pending":
        raise ValidationError(
            f"{entity.number} n'est plus modifiable (statut '{entity.status}')",
            details={"status": entity.status},
        )
    if entity.get_approvals().signed_slots():
        raise ValidationError(
            f"{entity.number} a déjà été signé et ne peut plus être modifié",
            details={"approvals": "signed"},
        )


def update_record(actor, entity, values: dict, expected_version=None):
    """Apply field edits to a pending, unsigned record; the caller commits."""
    ensure_permission(actor, entity.MODULE, "edit")
    _check_version(entity, expected_version)
    assert_editable(entity)
    values = {k: v for k, v in values.items() if k not in ("approvals", "status", "version")}
    Repository(type(entity)).update(entity, values)
    logger.info("%s %s updated by user=%s", type(entity).__name__, entity.number, actor.id)
    return entity


def delete_record(actor, entity) -> None:
    ensure_permission(actor, entity.MODULE, "delete")
    number = entity.number
    Repository(type(entity)).delete(entity)
    db.session.commit()
    logger.info(
        "%s %s deleted by user=%s", type(entity).__name__, number, actor.id,
        extra={"event_type": "record_deleted", "record": number},
    )


def sign_record(actor, entity, slot, *, expected_version=None, observation=None):
    version = parse_int(expected_version, "version", required=False)
    if version is None:
        version = entity.version
    return WORKFLOWS[entity.MODULE].sign(
        entity, slot, actor, expected_version=version, observation=observation
    )


def set_status(actor, entity, new_status, *, expected_version=None):
    return change_status(
        entity,
        new_status,
        actor,
        expected_version=parse_int(expected_version, "version", required=False),
    )
