"""
Repository — uniform data access per entity type.

Every entity collection is reached through the same four operations
(``get_all``, ``create``, ``update``, ``delete``) plus ``get`` and a
version-guarded ``compare_and_swap`` for signature writes.

Repositories flush but never commit; the calling service owns the
transaction.  Driver failures surface as ``BackendError`` with a readable
message for the constraint violations users can actually cause.
"""

import logging
import re

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from grantdesk.core.exceptions import BackendError, ConflictError, NotFoundError, ValidationError
from grantdesk.models import db

logger = logging.getLogger(__name__)


# (table.column, message template); ``{value}`` is filled from the payload
CONSTRAINT_MESSAGES = {
    "bank_accounts.account_number": (
        "account_number",
        "Un compte bancaire avec le numéro {value} existe déjà",
    ),
    "users.email": ("email", "Un utilisateur avec l'email {value} existe déjà"),
    "users.employee_id": ("employee_id", "Le matricule {value} est déjà attribué"),
    "roles.code": ("code", "Un rôle avec le code {value} existe déjà"),
    "grants.reference": ("reference", "Une subvention avec la référence {value} existe déjà"),
    "payments.payment_number": ("payment_number", "Le numéro de paiement {value} existe déjà"),
    "prefinancings.prefinancing_number": (
        "prefinancing_number",
        "Le numéro de préfinancement {value} existe déjà",
    ),
    "engagements.engagement_number": (
        "engagement_number",
        "Le numéro d'engagement {value} existe déjà",
    ),
    "employee_loans.loan_number": ("loan_number", "Le numéro de prêt {value} existe déjà"),
}

# Postgres: Key (account_number)=(X) / constraint "bank_accounts_account_number_key"
# SQLite:   UNIQUE constraint failed: bank_accounts.account_number
_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: ([\w.]+)")
_PG_CONSTRAINT = re.compile(r'constraint "(\w+)"')


def translate_integrity_error(exc: IntegrityError, payload: dict | None = None) -> BackendError:
    """Map a driver integrity error onto a readable BackendError."""
    raw = str(exc.orig) if exc.orig is not None else str(exc)
    candidates = []
    m = _SQLITE_UNIQUE.search(raw)
    if m:
        candidates.append(m.group(1))
    m = _PG_CONSTRAINT.search(raw)
    if m:
        name = m.group(1)
        candidates.extend(k for k in CONSTRAINT_MESSAGES if name.startswith(k.replace(".", "_")))

    for key in candidates:
        if key in CONSTRAINT_MESSAGES:
            field, template = CONSTRAINT_MESSAGES[key]
            value = (payload or {}).get(field, "")
            return BackendError(template.format(value=value), constraint=key, status_code=409)
    return BackendError(raw, status_code=409)


class Repository:
    """Generic SQLAlchemy repository for one model."""

    def __init__(self, model):
        self.model = model

    @property
    def label(self) -> str:
        return self.model.__name__

    def get_all(self, **filters) -> list:
        query = self.model.query
        for field, value in filters.items():
            if value is not None:
                query = query.filter(getattr(self.model, field) == value)
        return query.order_by(self.model.id.desc()).all()

    def get(self, pk):
        obj = db.session.get(self.model, pk)
        if obj is None:
            raise NotFoundError(resource=self.label, resource_id=pk)
        return obj

    def create(self, values: dict):
        obj = self.model(**values)
        db.session.add(obj)
        self._flush(values)
        return obj

    def update(self, obj, values: dict):
        for field, value in values.items():
            setattr(obj, field, value)
        if hasattr(obj, "version"):
            obj.version = (obj.version or 0) + 1
        self._flush(values)
        return obj

    def delete(self, obj) -> None:
        db.session.delete(obj)
        self._flush({})

    def compare_and_swap(self, obj, expected_version: int, values: dict):
        """Apply ``values`` only if the stored version still equals ``expected_version``.

        Raises ConflictError when another writer got there first; the caller
        must re-fetch.  On success the instance is refreshed from the store.
        """
        if obj.version != expected_version:
            raise ConflictError(self.label, obj.id, expected_version, obj.version)
        stmt = (
            sa.update(self.model)
            .where(self.model.id == obj.id, self.model.version == expected_version)
            .values(**values, version=expected_version + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            result = db.session.execute(stmt)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("CAS update failed on %s id=%s", self.label, obj.id)
            raise BackendError(str(exc)) from exc
        if result.rowcount == 0:
            db.session.rollback()
            current = db.session.get(self.model, obj.id)
            raise ConflictError(
                self.label, obj.id, expected_version, current.version if current else None
            )
        db.session.refresh(obj)
        return obj

    def _flush(self, payload: dict) -> None:
        try:
            db.session.flush()
        except IntegrityError as exc:
            db.session.rollback()
            error = translate_integrity_error(exc, payload)
            logger.warning(
                "Integrity error on %s: %s", self.label, error,
                extra={"event_type": "integrity_error"},
            )
            raise error from exc
        except ValidationError:
            # raised by the model write guards during flush
            db.session.rollback()
            raise
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Database error on %s", self.label)
            raise BackendError(str(exc)) from exc
