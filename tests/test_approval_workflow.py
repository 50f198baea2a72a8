"""
Three-signature workflow tests.

Test blocks:
  1. Slot / profession grid (pure decisions)
  2. Ordering and no re-sign on persisted records
  3. Draft staging before the record exists
  4. End-to-end: draft → persisted → approved
  5. Version compare-and-swap
  6. Model write guards
"""

from types import SimpleNamespace

import pytest
import sqlalchemy as sa

from grantdesk.core.approvals import (
    ACCOUNTANT,
    GRANT_COORDINATOR,
    NATIONAL_COORDINATOR,
    ApprovalSlot,
    Approvals,
    SlotId,
    ordering_violations,
)
from grantdesk.core.exceptions import (
    ConflictError,
    PermissionDeniedError,
    SignatureOrderError,
    ValidationError,
)
from grantdesk.models import db as _db
from grantdesk.models.finance import Engagement
from grantdesk.services.approval_workflow import (
    ALREADY_SIGNED,
    NOT_AUTHORIZED,
    NOT_CREATOR,
    NOT_PERSISTED,
    PRIOR_SIGNATURES_MISSING,
    RECORD_CLOSED,
    WRONG_PROFESSION,
    engagement_workflow,
    payment_workflow,
    prefinancing_workflow,
)
from grantdesk.services.status_lifecycle import change_status

SIGNED = ApprovalSlot(name="Someone", signature=True, date="2026-01-01")


def _record(status="pending", **slots):
    approvals = Approvals(**slots)
    return SimpleNamespace(status=status, get_approvals=lambda: approvals)


# ── 1. Slot / profession grid ────────────────────────────────────────────────

PROFESSIONS = (GRANT_COORDINATOR, ACCOUNTANT, NATIONAL_COORDINATOR)
SLOT_OWNER = {
    SlotId.SUPERVISOR1: GRANT_COORDINATOR,
    SlotId.SUPERVISOR2: ACCOUNTANT,
    SlotId.FINAL_APPROVAL: NATIONAL_COORDINATOR,
}


@pytest.mark.parametrize("slot", list(SlotId))
@pytest.mark.parametrize("profession", PROFESSIONS)
def test_only_the_owning_profession_may_sign_a_slot(slot, profession):
    # both supervisors signed so the final slot is reachable
    entity = _record(supervisor1=SIGNED, supervisor2=SIGNED) if slot is SlotId.FINAL_APPROVAL \
        else _record()
    decision = engagement_workflow.can_sign(entity, slot, profession, True)
    if SLOT_OWNER[slot] == profession:
        assert decision.allowed
    else:
        assert not decision.allowed
        assert decision.reason == WRONG_PROFESSION


def test_profession_whitespace_is_normalized():
    decision = engagement_workflow.can_sign(_record(), "supervisor1", "  Coordinateur  de la Subvention ", True)
    assert decision.allowed


def test_missing_sign_action_is_refused_first():
    decision = engagement_workflow.can_sign(_record(), "supervisor1", GRANT_COORDINATOR, False)
    assert decision.reason == NOT_AUTHORIZED


def test_unknown_slot_is_a_validation_error():
    with pytest.raises(ValidationError):
        engagement_workflow.can_sign(_record(), "supervisor3", GRANT_COORDINATOR, True)


# ── 2. Ordering and no re-sign ───────────────────────────────────────────────


def test_final_approval_needs_both_supervisors():
    for slots in ({}, {"supervisor1": SIGNED}, {"supervisor2": SIGNED}):
        decision = engagement_workflow.can_sign(
            _record(**slots), SlotId.FINAL_APPROVAL, NATIONAL_COORDINATOR, True
        )
        assert decision.reason == PRIOR_SIGNATURES_MISSING


def test_supervisors_may_sign_in_any_order():
    decision = engagement_workflow.can_sign(
        _record(supervisor2=SIGNED), SlotId.SUPERVISOR1, GRANT_COORDINATOR, True
    )
    assert decision.allowed


def test_signed_slot_cannot_be_signed_again():
    decision = engagement_workflow.can_sign(
        _record(supervisor1=SIGNED), SlotId.SUPERVISOR1, GRANT_COORDINATOR, True
    )
    assert decision.reason == ALREADY_SIGNED


def test_closed_record_collects_no_signature():
    decision = engagement_workflow.can_sign(
        _record(status="rejected"), SlotId.SUPERVISOR1, GRANT_COORDINATOR, True
    )
    assert decision.reason == RECORD_CLOSED


def test_ordering_violations_reports_missing_supervisors():
    approvals = Approvals(final_approval=SIGNED)
    assert len(ordering_violations(approvals)) == 2
    assert ordering_violations(Approvals(supervisor1=SIGNED, supervisor2=SIGNED, final_approval=SIGNED)) == []


def test_sign_persists_name_and_bumps_version(make_engagement, grant_coordinator):
    engagement = make_engagement()
    assert engagement.version == 1

    engagement_workflow.sign(engagement, "supervisor1", grant_coordinator, expected_version=1,
                             observation="RAS")

    stored = _db.session.get(Engagement, engagement.id)
    slot = stored.get_approvals().get(SlotId.SUPERVISOR1)
    assert slot.signature is True
    assert slot.name == grant_coordinator.full_name
    assert slot.observation == "RAS"
    assert stored.version == 2
    assert stored.status == "pending"


def test_resign_on_persisted_record_is_refused(make_engagement, grant_coordinator):
    engagement = make_engagement()
    engagement_workflow.sign(engagement, "supervisor1", grant_coordinator, expected_version=1,
                             observation="première")
    with pytest.raises(PermissionDeniedError) as exc:
        engagement_workflow.sign(engagement, "supervisor1", grant_coordinator,
                                 expected_version=engagement.version, observation="seconde")
    assert exc.value.reason == ALREADY_SIGNED
    assert not isinstance(exc.value, SignatureOrderError)

    stored = _db.session.get(Engagement, engagement.id)
    assert stored.version == 2
    assert stored.get_approvals().get(SlotId.SUPERVISOR1).observation == "première"


def test_closed_record_refuses_signature(make_engagement, national_coordinator, grant_coordinator):
    engagement = make_engagement()
    change_status(engagement, "rejected", national_coordinator)
    with pytest.raises(PermissionDeniedError) as exc:
        engagement_workflow.sign(engagement, "supervisor1", grant_coordinator,
                                 expected_version=engagement.version)
    assert exc.value.reason == RECORD_CLOSED


def test_wrong_profession_raises_permission_denied(make_engagement, accountant):
    engagement = make_engagement()
    with pytest.raises(PermissionDeniedError) as exc:
        engagement_workflow.sign(engagement, "supervisor1", accountant, expected_version=1)
    assert not isinstance(exc.value, SignatureOrderError)


def test_final_before_supervisors_raises_signature_order(make_engagement, national_coordinator):
    engagement = make_engagement()
    with pytest.raises(SignatureOrderError):
        engagement_workflow.sign(engagement, "finalApproval", national_coordinator, expected_version=1)
    assert _db.session.get(Engagement, engagement.id).version == 1


def test_read_only_role_cannot_sign_even_with_profession(make_engagement, reader):
    engagement = make_engagement()
    with pytest.raises(PermissionDeniedError):
        engagement_workflow.sign(engagement, "supervisor1", reader, expected_version=1)


# ── 3. Draft staging ─────────────────────────────────────────────────────────

WORKFLOWS_BY_MODULE = {
    "engagements": engagement_workflow,
    "payments": payment_workflow,
    "prefinancing": prefinancing_workflow,
}


@pytest.fixture()
def new_record(make_engagement, make_payment, make_prefinancing, approve):
    """Create a record of the given module, optionally with draft approvals."""

    def _payment(**overrides):
        return make_payment(approve(make_engagement(amount=1000)), **overrides)

    factories = {
        "engagements": make_engagement,
        "payments": _payment,
        "prefinancing": make_prefinancing,
    }

    def _create(module, approvals=None):
        overrides = {"approvals": approvals} if approvals is not None else {}
        return factories[module](**overrides)

    return _create


@pytest.mark.parametrize("module", list(WORKFLOWS_BY_MODULE))
def test_stage_creator_signature_on_draft(module, grant_coordinator):
    draft = WORKFLOWS_BY_MODULE[module].stage(None, "supervisor1", grant_coordinator)
    assert draft.is_signed(SlotId.SUPERVISOR1)
    assert draft.get(SlotId.SUPERVISOR1).name == grant_coordinator.full_name


@pytest.mark.parametrize("module", list(WORKFLOWS_BY_MODULE))
def test_draft_holds_only_the_creator_signature(module, grant_coordinator, accountant):
    workflow = WORKFLOWS_BY_MODULE[module]
    draft = workflow.stage(None, "supervisor1", grant_coordinator)
    with pytest.raises(PermissionDeniedError) as exc:
        workflow.stage(draft, "supervisor2", accountant)
    assert exc.value.reason == NOT_CREATOR


def test_final_approval_on_draft_is_refused(national_coordinator):
    draft = Approvals(supervisor1=SIGNED, supervisor2=SIGNED)
    with pytest.raises(SignatureOrderError):
        prefinancing_workflow.stage(draft, "finalApproval", national_coordinator)
    decision = prefinancing_workflow.decision_for(None, "finalApproval", national_coordinator, draft=draft)
    assert decision.reason == NOT_PERSISTED


def test_approvals_for_create_keeps_only_signed_named_supervisors():
    kept = payment_workflow.approvals_for_create({
        "supervisor1": {"name": "Awa", "signature": True, "date": "2026-01-02"},
        "supervisor2": {"name": "", "signature": True},
        "finalApproval": {"name": "Marie", "signature": True},
    })
    assert list(kept) == ["supervisor1"]


@pytest.mark.parametrize("module", list(WORKFLOWS_BY_MODULE))
def test_staged_supervisor_is_the_only_stored_slot(module, new_record, grant_coordinator):
    draft = WORKFLOWS_BY_MODULE[module].stage(None, "supervisor1", grant_coordinator)
    record = new_record(module, draft.to_dict())
    assert list(record.approvals) == ["supervisor1"]
    assert record.approvals["supervisor1"]["name"] == grant_coordinator.full_name
    assert record.status == "pending"


def test_create_with_own_signature_stores_it(make_engagement, grant_coordinator):
    engagement = make_engagement(approvals={
        "supervisor1": {"name": "typed by client", "signature": True},
        "finalApproval": {"name": "sneaky", "signature": True},
    })
    approvals = engagement.get_approvals()
    assert approvals.signed_slots() == [SlotId.SUPERVISOR1]
    assert approvals.get(SlotId.SUPERVISOR1).name == grant_coordinator.full_name
    assert approvals.get(SlotId.SUPERVISOR1).date is not None
    assert engagement.status == "pending"


def test_create_with_someone_elses_slot_is_refused(make_engagement):
    with pytest.raises(PermissionDeniedError):
        make_engagement(approvals={"supervisor2": {"name": "Koffi", "signature": True}})
    assert Engagement.query.count() == 0


# ── 4. End-to-end ────────────────────────────────────────────────────────────


@pytest.mark.parametrize("module", list(WORKFLOWS_BY_MODULE))
def test_full_signature_path(module, new_record, grant_coordinator, accountant, national_coordinator):
    workflow = WORKFLOWS_BY_MODULE[module]

    # Grant Coordinator signs while drafting
    draft = workflow.stage(None, "supervisor1", grant_coordinator)

    # National Coordinator cannot sign before the record exists
    with pytest.raises(SignatureOrderError) as exc:
        workflow.stage(draft, "finalApproval", national_coordinator)
    assert exc.value.reason == NOT_PERSISTED

    record = new_record(module, draft.to_dict())
    assert record.get_approvals().is_signed(SlotId.SUPERVISOR1)

    # Accountant signs the saved record
    workflow.sign(record, "supervisor2", accountant, expected_version=record.version)
    assert record.status == "pending"

    # National Coordinator signs the saved record, which approves it
    workflow.sign(record, "finalApproval", national_coordinator, expected_version=record.version)
    stored = _db.session.get(type(record), record.id)
    assert stored.status == "approved"
    assert stored.get_approvals().signed_slots() == list(SlotId)


# ── 5. Compare-and-swap ──────────────────────────────────────────────────────


def test_stale_expected_version_conflicts(make_engagement, grant_coordinator, accountant):
    engagement = make_engagement()
    engagement_workflow.sign(engagement, "supervisor1", grant_coordinator, expected_version=1)
    with pytest.raises(ConflictError) as exc:
        engagement_workflow.sign(engagement, "supervisor2", accountant, expected_version=1)
    assert exc.value.actual_version == 2


def test_concurrent_writer_is_detected(make_engagement, grant_coordinator):
    engagement = make_engagement()
    assert engagement.version == 1
    # another writer bumps the version behind the loaded instance
    _db.session.execute(
        sa.update(Engagement)
        .where(Engagement.id == engagement.id)
        .values(version=Engagement.version + 1)
        .execution_options(synchronize_session=False)
    )
    assert engagement.version == 1
    with pytest.raises(ConflictError):
        engagement_workflow.sign(engagement, "supervisor1", grant_coordinator, expected_version=1)


# ── 6. Model write guards ────────────────────────────────────────────────────


def test_out_of_order_approvals_cannot_be_written(make_engagement):
    engagement = make_engagement()
    engagement.approvals = {"finalApproval": {"name": "X", "signature": True}}
    with pytest.raises(ValidationError):
        _db.session.flush()
    _db.session.rollback()


def test_unknown_status_cannot_be_written(make_engagement):
    engagement = make_engagement()
    engagement.status = "archived"
    with pytest.raises(ValidationError):
        _db.session.flush()
    _db.session.rollback()
