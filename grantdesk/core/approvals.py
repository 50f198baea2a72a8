"""
Approval slot types shared by every signable record.

A signable record (payment, prefinancing, engagement, employee loan) stores a
fixed-shape ``approvals`` map with at most three slots. This module owns that
shape: the slot identifiers, the profession bound to each slot, and strict
parsing of the stored JSON so malformed payloads are rejected before they
reach the database.

No database access and no Flask imports here.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum

from grantdesk.core.exceptions import ValidationError

# ── Professions carrying signing authority ────────────────────────────────────

GRANT_COORDINATOR = "Coordinateur de la Subvention"
ACCOUNTANT = "Comptable"
NATIONAL_COORDINATOR = "Coordonnateur National"

SIGNING_PROFESSIONS = frozenset({GRANT_COORDINATOR, ACCOUNTANT, NATIONAL_COORDINATOR})


class SlotId(str, Enum):
    SUPERVISOR1 = "supervisor1"
    SUPERVISOR2 = "supervisor2"
    FINAL_APPROVAL = "finalApproval"

    @classmethod
    def parse(cls, value) -> "SlotId":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f"Unknown approval slot '{value}'",
                details={"slot": f"must be one of {[s.value for s in cls]}"},
            ) from None


# Signing order
SLOT_ORDER = (SlotId.SUPERVISOR1, SlotId.SUPERVISOR2, SlotId.FINAL_APPROVAL)

SLOT_PROFESSIONS = {
    SlotId.SUPERVISOR1: GRANT_COORDINATOR,
    SlotId.SUPERVISOR2: ACCOUNTANT,
    SlotId.FINAL_APPROVAL: NATIONAL_COORDINATOR,
}

# Slots a signer may fill before the record exists
DRAFT_SIGNABLE_SLOTS = frozenset({SlotId.SUPERVISOR1, SlotId.SUPERVISOR2})

_SLOT_KEYS = frozenset({"name", "signature", "date", "observation"})


def normalize_profession(profession: str | None) -> str:
    return " ".join((profession or "").split())


@dataclass(frozen=True)
class ApprovalSlot:
    """One signature slot. Immutable once ``signature`` is True."""

    name: str
    signature: bool = False
    date: str | None = None
    observation: str | None = None

    @classmethod
    def from_dict(cls, slot: SlotId, raw) -> "ApprovalSlot":
        if not isinstance(raw, dict):
            raise ValidationError(
                f"Approval slot '{slot.value}' must be an object",
                details={slot.value: "invalid"},
            )
        unknown = set(raw) - _SLOT_KEYS
        if unknown:
            raise ValidationError(
                f"Approval slot '{slot.value}' has unknown fields: {sorted(unknown)}",
                details={slot.value: "invalid"},
            )
        name = raw.get("name") or ""
        if not isinstance(name, str):
            raise ValidationError(f"Approval slot '{slot.value}' name must be text")
        signature = raw.get("signature", False)
        if not isinstance(signature, bool):
            raise ValidationError(f"Approval slot '{slot.value}' signature must be a boolean")
        signed_on = raw.get("date")
        if signed_on is not None:
            try:
                date.fromisoformat(str(signed_on))
            except ValueError:
                raise ValidationError(
                    f"Approval slot '{slot.value}' date must be YYYY-MM-DD"
                ) from None
        observation = raw.get("observation")
        if observation is not None and not isinstance(observation, str):
            raise ValidationError(f"Approval slot '{slot.value}' observation must be text")
        return cls(
            name=name.strip(),
            signature=signature,
            date=str(signed_on) if signed_on is not None else None,
            observation=observation,
        )

    def to_dict(self) -> dict:
        d = {"name": self.name, "signature": self.signature}
        if self.date is not None:
            d["date"] = self.date
        if self.observation:
            d["observation"] = self.observation
        return d


@dataclass(frozen=True)
class Approvals:
    """Fixed-shape approvals record; absent slots are ``None``."""

    supervisor1: ApprovalSlot | None = None
    supervisor2: ApprovalSlot | None = None
    final_approval: ApprovalSlot | None = None

    @staticmethod
    def _attr(slot: SlotId) -> str:
        return "final_approval" if slot is SlotId.FINAL_APPROVAL else slot.value

    def get(self, slot: SlotId) -> ApprovalSlot | None:
        return getattr(self, self._attr(SlotId.parse(slot)))

    def is_signed(self, slot: SlotId) -> bool:
        current = self.get(slot)
        return bool(current and current.signature)

    def with_slot(self, slot: SlotId, value: ApprovalSlot | None) -> "Approvals":
        return replace(self, **{self._attr(SlotId.parse(slot)): value})

    def signed_slots(self) -> list[SlotId]:
        return [s for s in SLOT_ORDER if self.is_signed(s)]

    @classmethod
    def from_dict(cls, raw) -> "Approvals":
        """Parse a stored/submitted approvals map, rejecting unknown slots."""
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ValidationError("approvals must be an object", details={"approvals": "invalid"})
        values = {}
        for key, slot_raw in raw.items():
            slot = SlotId.parse(key)
            if slot_raw is None:
                continue
            values[cls._attr(slot)] = ApprovalSlot.from_dict(slot, slot_raw)
        return cls(**values)

    def to_dict(self) -> dict:
        """Serialize, omitting absent slots entirely."""
        out = {}
        for slot in SLOT_ORDER:
            current = self.get(slot)
            if current is not None:
                out[slot.value] = current.to_dict()
        return out


def ordering_violations(approvals: Approvals) -> list[str]:
    """Return human-readable violations of the signing order, empty if valid."""
    problems = []
    if approvals.is_signed(SlotId.FINAL_APPROVAL):
        for slot in (SlotId.SUPERVISOR1, SlotId.SUPERVISOR2):
            if not approvals.is_signed(slot):
                problems.append(f"{SlotId.FINAL_APPROVAL.value} signed before {slot.value}")
    return problems
