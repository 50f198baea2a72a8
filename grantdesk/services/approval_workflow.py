"""
Approval Workflow — three-party sequential sign-off for signable records.

    supervisor1 (Coordinateur de la Subvention)
        → supervisor2 (Comptable)
            → finalApproval (Coordonnateur National)  ⇒ status = "approved"

One ``ApprovalWorkflow`` instance per signable model; payments,
prefinancings, engagements and employee loans all share the same rules:

  1. the signer's role must grant ``sign`` on the record's module
  2. the signer's profession must match the slot
  3. a signed slot is never signed again
  4. only pending records collect signatures
  5. ``finalApproval`` needs a persisted record and both supervisor slots

Persisted records are updated immediately under a version compare-and-swap.
Records still being drafted carry only their creator's supervisor signature,
kept at creation if it is signed and named.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from grantdesk.core.approvals import (
    DRAFT_SIGNABLE_SLOTS,
    SLOT_PROFESSIONS,
    ApprovalSlot,
    Approvals,
    SlotId,
    normalize_profession,
    ordering_violations,
)
from grantdesk.core.exceptions import PermissionDeniedError, SignatureOrderError
from grantdesk.models import db
from grantdesk.models.finance import EmployeeLoan, Engagement, Payment, Prefinancing
from grantdesk.services.permission_service import has_permission, permission_map_for_user
from grantdesk.services.repository import Repository

logger = logging.getLogger(__name__)

# Decision reasons
NOT_AUTHORIZED = "not_authorized"
WRONG_PROFESSION = "wrong_profession"
ALREADY_SIGNED = "already_signed"
RECORD_CLOSED = "record_closed"
NOT_PERSISTED = "not_persisted"
NOT_CREATOR = "not_creator"
PRIOR_SIGNATURES_MISSING = "prior_signatures_missing"

SIGNABLE_STATUS = "pending"


@dataclass(frozen=True)
class SignDecision:
    allowed: bool
    reason: Optional[str] = None
    message: str = ""

    def raise_for_denial(self, module: str) -> None:
        if self.allowed:
            return
        if self.reason in (PRIOR_SIGNATURES_MISSING, NOT_PERSISTED):
            raise SignatureOrderError(self.message, reason=self.reason)
        raise PermissionDeniedError(self.message, module=module, action="sign", reason=self.reason)


ALLOWED = SignDecision(True)


class ApprovalWorkflow:
    """Signature state machine bound to one signable model."""

    def __init__(self, model):
        self.model = model
        self.module = model.MODULE
        self.repository = Repository(model)

    # ── decisions ────────────────────────────────────────────────────────

    def can_sign(
        self,
        entity,
        slot,
        signer_profession: Optional[str],
        signer_has_sign_action: bool,
        draft: Optional[Approvals] = None,
    ) -> SignDecision:
        """Decide whether a signer may fill ``slot``.

        ``entity`` is None while the record is still a draft; ``draft`` then
        holds the slots staged so far.
        """
        slot = SlotId.parse(slot)
        if not signer_has_sign_action:
            return SignDecision(False, NOT_AUTHORIZED, "Vous n'avez pas la permission de signer")

        required = SLOT_PROFESSIONS[slot]
        if normalize_profession(signer_profession) != required:
            return SignDecision(
                False, WRONG_PROFESSION, f"Seul le {required} peut signer cette section"
            )

        approvals = entity.get_approvals() if entity is not None else (draft or Approvals())
        if approvals.is_signed(slot):
            return SignDecision(False, ALREADY_SIGNED, "Cette section a déjà été signée")

        if entity is not None and entity.status != SIGNABLE_STATUS:
            return SignDecision(
                False, RECORD_CLOSED, "Ce dossier n'est plus en attente de signature"
            )

        if slot is SlotId.FINAL_APPROVAL:
            if entity is None:
                return SignDecision(
                    False,
                    NOT_PERSISTED,
                    "Le dossier doit être enregistré avant la validation finale",
                )
            if not (approvals.is_signed(SlotId.SUPERVISOR1) and approvals.is_signed(SlotId.SUPERVISOR2)):
                return SignDecision(
                    False,
                    PRIOR_SIGNATURES_MISSING,
                    "Le Coordinateur de la Subvention et le Comptable doivent signer "
                    "avant la validation finale",
                )
        return ALLOWED

    def decision_for(self, entity, slot, actor, draft: Optional[Approvals] = None) -> SignDecision:
        pmap = permission_map_for_user(actor)
        return self.can_sign(
            entity, slot, actor.profession, has_permission(pmap, self.module, "sign"), draft=draft
        )

    # ── persisted records ───────────────────────────────────────────────

    def sign(
        self,
        entity,
        slot,
        actor,
        *,
        expected_version: int,
        observation: Optional[str] = None,
        today: Optional[date] = None,
    ):
        """Sign one slot of a persisted record and persist it at once.

        Raises PermissionDeniedError or SignatureOrderError on refusal,
        ValidationError for an unknown slot and ConflictError if the record
        changed since it was read.
        """
        slot = SlotId.parse(slot)
        decision = self.decision_for(entity, slot, actor)
        if not decision.allowed:
            logger.info(
                "Signature refused on %s %s slot=%s reason=%s",
                self.module, entity.number, slot.value, decision.reason,
                extra={"event_type": "signature_refused", "record": entity.number},
            )
            decision.raise_for_denial(self.module)

        updated = entity.get_approvals().with_slot(
            slot,
            ApprovalSlot(
                name=actor.full_name,
                signature=True,
                date=(today or date.today()).isoformat(),
                observation=observation or None,
            ),
        )
        problems = ordering_violations(updated)
        if problems:
            raise SignatureOrderError("; ".join(problems))

        values = {"approvals": updated.to_dict()}
        if slot is SlotId.FINAL_APPROVAL:
            values["status"] = "approved"

        self.repository.compare_and_swap(entity, expected_version, values)
        db.session.commit()
        logger.info(
            "Signed %s %s slot=%s by user=%s",
            self.module, entity.number, slot.value, actor.id,
            extra={"event_type": "signature", "record": entity.number, "status": entity.status},
        )
        return entity

    # ── drafts ──────────────────────────────────────────────────────────

    def stage(
        self,
        draft: Optional[Approvals],
        slot,
        creator,
        observation: Optional[str] = None,
        today: Optional[date] = None,
    ) -> Approvals:
        """Stage the creator's own supervisor signature on an unsaved record.

        A draft only ever carries its creator's signature, which is what
        ``verify_draft_signers`` accepts at creation. The other supervisor
        signs once the record is saved.
        """
        slot = SlotId.parse(slot)
        draft = draft or Approvals()
        decision = self.decision_for(None, slot, creator, draft=draft)
        if decision.allowed and any(s is not slot for s in draft.signed_slots()):
            decision = SignDecision(
                False,
                NOT_CREATOR,
                "Un dossier non enregistré ne porte que la signature de son créateur",
            )
        if not decision.allowed:
            decision.raise_for_denial(self.module)
        return draft.with_slot(
            slot,
            ApprovalSlot(
                name=creator.full_name,
                signature=True,
                date=(today or date.today()).isoformat(),
                observation=observation or None,
            ),
        )

    def approvals_for_create(self, draft) -> dict:
        """Approvals to store on a new record.

        Keeps supervisor slots that are signed and carry a name; a submitted
        ``finalApproval`` is never stored at creation.
        """
        if not isinstance(draft, Approvals):
            draft = Approvals.from_dict(draft)
        kept = Approvals()
        for slot in (SlotId.SUPERVISOR1, SlotId.SUPERVISOR2, SlotId.FINAL_APPROVAL):
            current = draft.get(slot)
            if current is None:
                continue
            if slot not in DRAFT_SIGNABLE_SLOTS:
                logger.info("Dropping %s submitted at creation on %s", slot.value, self.module)
                continue
            if current.signature and current.name:
                kept = kept.with_slot(slot, current)
        return kept.to_dict()

    def verify_draft_signers(self, draft, actor) -> None:
        """Reject pre-signed slots the creating user could not have signed.

        A draft can only carry the creator's own supervisor signature, so a
        submitted slot must match the creator's profession and role.
        """
        if not isinstance(draft, Approvals):
            draft = Approvals.from_dict(draft)
        for slot in DRAFT_SIGNABLE_SLOTS:
            current = draft.get(slot)
            if current is None or not current.signature:
                continue
            decision = self.decision_for(None, slot, actor, draft=draft.with_slot(slot, None))
            decision.raise_for_denial(self.module)


payment_workflow = ApprovalWorkflow(Payment)
prefinancing_workflow = ApprovalWorkflow(Prefinancing)
engagement_workflow = ApprovalWorkflow(Engagement)
employee_loan_workflow = ApprovalWorkflow(EmployeeLoan)

WORKFLOWS = {
    wf.module: wf
    for wf in (payment_workflow, prefinancing_workflow, engagement_workflow, employee_loan_workflow)
}
