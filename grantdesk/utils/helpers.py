"""Shared parsing helpers for services and blueprints.

parse_date:     lenient, returns None on bad input
require_date:   strict, raises ValidationError
parse_amount:   strict positive/non-negative number parsing
parse_int:      strict integer parsing for ids and counts
current_user:   the authenticated User behind the request, or None
"""
import logging
from datetime import date, datetime

from flask import g

from grantdesk.core.exceptions import ValidationError
from grantdesk.models import db

logger = logging.getLogger(__name__)


def parse_date(value):
    """Parse a date string (ISO or DD/MM/YYYY) to a date object.

    Returns None for empty/invalid input. Supports:
    - YYYY-MM-DD
    - YYYY-MM-DDTHH:MM:SS (→ .date())
    - DD/MM/YYYY (French format)
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return None


def require_date(value, field: str):
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError(
            f"Le champ '{field}' doit être une date valide (AAAA-MM-JJ)",
            details={field: "invalid date"},
        )
    return parsed


def parse_amount(value, field: str = "amount", *, allow_zero: bool = False) -> float:
    """Parse a money amount, rejecting blanks, non-numbers and negatives."""
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"Le champ '{field}' est obligatoire", details={field: "required"})
    if isinstance(value, bool):
        raise ValidationError(f"Le champ '{field}' doit être un nombre", details={field: "invalid"})
    try:
        amount = float(str(value).replace(",", ".").replace(" ", ""))
    except ValueError:
        raise ValidationError(
            f"Le champ '{field}' doit être un nombre", details={field: "invalid"}
        ) from None
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(
            f"Le champ '{field}' doit être supérieur à 0", details={field: "must be positive"}
        )
    return round(amount, 2)


def parse_int(value, field: str, *, required: bool = True):
    """Parse an identifier or count sent by the client.

    Blank input is ``None`` unless ``required``; anything else that is not an
    integer raises ValidationError.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"Le champ '{field}' est obligatoire", details={field: "required"})
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Le champ '{field}' doit être un entier", details={field: "invalid"})
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(
            f"Le champ '{field}' doit être un entier", details={field: "invalid"}
        ) from None


def require_fields(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(
            "Veuillez remplir tous les champs obligatoires",
            details={f: "required" for f in missing},
        )


def current_user():
    """User authenticated by the JWT middleware for this request."""
    from grantdesk.models.auth import User

    user_id = getattr(g, "jwt_user_id", None)
    if user_id is None:
        return None
    return db.session.get(User, int(user_id))


def int_arg(value, default=None):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def listing_params(args, default_sort: str = "date", default_direction: str = "desc") -> dict:
    """Read the shared search/filter/sort/page query parameters."""
    return {
        "search": args.get("search") or None,
        "status": args.get("status") or None,
        "date_value": args.get("date") or None,
        "grant_id": int_arg(args.get("grant_id")),
        "sort": args.get("sort") or default_sort,
        "direction": args.get("direction") or default_direction,
        "page": int_arg(args.get("page"), 1),
        "page_size": int_arg(args.get("page_size"), 10),
    }


def page_to_dict(page: dict, serializer=None) -> dict:
    """JSON form of a ``listing.paginate`` result."""
    serializer = serializer or (lambda obj: obj.to_dict())
    return {**page, "items": [serializer(item) for item in page["items"]]}
