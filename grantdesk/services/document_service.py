"""
Document export — approval sheets and listing workbooks.

The approval sheet of a signable record is an HTML fragment; turning it into
a downloadable file is delegated to a ``DocumentRenderer``.  The default
renderer wraps the fragment in a printable HTML page, so the browser's
print-to-PDF gives the paper form.  Payment listings export to Excel.
"""

import io
import logging
from datetime import datetime, timezone

from flask import render_template_string
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from grantdesk.core.approvals import SLOT_ORDER, SLOT_PROFESSIONS
from grantdesk.models import db
from grantdesk.models.finance import SIGNABLE_MODELS, Grant, Payment
from grantdesk.services.grant_service import format_currency
from grantdesk.services.listing import filter_records, sort_records
from grantdesk.services.payment_service import SEARCH_FIELDS as PAYMENT_SEARCH_FIELDS
from grantdesk.services.permission_service import ensure_permission
from grantdesk.services.repository import Repository

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="1E3A8A", end_color="1E3A8A", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

DOCUMENT_TITLES = {
    "engagements": "Fiche d'Engagement",
    "payments": "Ordre de Paiement",
    "prefinancing": "Demande de Préfinancement",
    "employee_loans": "Demande de Prêt Employé",
}

SLOT_TITLES = {
    "supervisor1": "Coordinateur de la Subvention",
    "supervisor2": "Comptable",
    "finalApproval": "Validation finale",
}

STATUS_LABELS = {
    "pending": "En attente",
    "approved": "Approuvé",
    "paid": "Payé",
    "cashed": "Encaissé",
    "repaid": "Remboursé",
    "active": "Actif",
    "completed": "Terminé",
    "rejected": "Rejeté",
}


# ═══════════════════════════════════════════════════════════════
# Renderers
# ═══════════════════════════════════════════════════════════════
class DocumentRenderer:
    """Turns an HTML fragment into a downloadable file."""

    mimetype = "application/octet-stream"
    extension = "bin"

    def render_to_file(self, html_fragment: str) -> bytes:
        raise NotImplementedError


class HtmlDocumentRenderer(DocumentRenderer):
    mimetype = "text/html"
    extension = "html"

    PAGE = """<!DOCTYPE html>
<html lang="fr">
<head>
<meta charset="utf-8">
<title>{{ title }}</title>
<style>
  body { font-family: Arial, sans-serif; margin: 24px; color: #111; }
  table { border-collapse: collapse; width: 100%; margin-bottom: 16px; }
  th, td { border: 1px solid #999; padding: 6px 8px; text-align: left; }
  th { background: #f1f5f9; }
  .signatures td { height: 80px; vertical-align: top; width: 33%; }
  @media print { body { margin: 0; } }
</style>
</head>
<body>
{{ body | safe }}
</body>
</html>
"""

    def render_to_file(self, html_fragment: str) -> bytes:
        page = render_template_string(self.PAGE, title="Document", body=html_fragment)
        return page.encode("utf-8")


_SHEET = """
<h1>{{ title }}</h1>
<p>N° {{ record.number }} &middot; {{ grant_name }} &middot; Statut : {{ status }}</p>
<table>
  {% for label, value in fields %}
  <tr><th>{{ label }}</th><td>{{ value }}</td></tr>
  {% endfor %}
</table>
{% if expenses %}
<h2>Dépenses</h2>
<table>
  <tr><th>Fournisseur</th><th>Facture</th><th>Montant</th><th>Description</th></tr>
  {% for e in expenses %}
  <tr><td>{{ e.supplier }}</td><td>{{ e.invoice_number }}</td><td>{{ e.amount }}</td><td>{{ e.description }}</td></tr>
  {% endfor %}
</table>
{% endif %}
<h2>Signatures</h2>
<table class="signatures">
  <tr>{% for s in slots %}<th>{{ s.title }}<br><small>{{ s.profession }}</small></th>{% endfor %}</tr>
  <tr>{% for s in slots %}<td>
    {% if s.signed %}<strong>{{ s.name }}</strong><br>Signé le {{ s.date }}
    {% if s.observation %}<br><em>{{ s.observation }}</em>{% endif %}
    {% else %}&nbsp;{% endif %}
  </td>{% endfor %}</tr>
</table>
<p><small>Généré le {{ generated }}</small></p>
"""


def _fields(record, currency: str) -> list[tuple[str, str]]:
    fields = [
        ("Date", record.date.strftime("%d/%m/%Y") if record.date else ""),
        ("Montant", format_currency(record.amount, currency)),
        ("Description", record.description or ""),
    ]
    for attr, label in (
        ("supplier", "Fournisseur"),
        ("invoice_number", "N° facture"),
        ("quote_reference", "Référence devis"),
        ("payment_method", "Mode de paiement"),
        ("check_number", "N° chèque"),
        ("employee_name", "Employé"),
        ("employee_ref", "Matricule"),
    ):
        value = getattr(record, attr, None)
        if value:
            fields.append((label, value))
    expected = getattr(record, "expected_repayment_date", None)
    if expected:
        fields.append(("Remboursement prévu", expected.strftime("%d/%m/%Y")))
    return fields


def approval_sheet_html(record) -> str:
    """HTML fragment of a record's approval sheet with its three signature boxes."""
    grant = db.session.get(Grant, record.grant_id)
    currency = grant.currency if grant else "EUR"
    approvals = record.get_approvals()
    slots = []
    for slot in SLOT_ORDER:
        current = approvals.get(slot)
        slots.append({
            "title": SLOT_TITLES[slot.value],
            "profession": SLOT_PROFESSIONS[slot],
            "signed": bool(current and current.signature),
            "name": current.name if current else "",
            "date": current.date if current else "",
            "observation": current.observation if current else None,
        })
    expenses = [
        {**e, "amount": format_currency(e.get("amount"), currency)}
        for e in (getattr(record, "expenses", None) or [])
    ]
    return render_template_string(
        _SHEET,
        title=DOCUMENT_TITLES[record.MODULE],
        record=record,
        grant_name=grant.name if grant else "",
        status=STATUS_LABELS.get(record.status, record.status),
        fields=_fields(record, currency),
        expenses=expenses,
        slots=slots,
        generated=datetime.now(timezone.utc).strftime("%d/%m/%Y %H:%M UTC"),
    )


def export_approval_sheet(actor, module: str, record_id: int, renderer: DocumentRenderer = None):
    """Render the approval sheet of one record; returns (bytes, filename, mimetype)."""
    model = SIGNABLE_MODELS[module]
    ensure_permission(actor, module, "view")
    record = Repository(model).get(record_id)
    renderer = renderer or HtmlDocumentRenderer()
    content = renderer.render_to_file(approval_sheet_html(record))
    logger.info(
        "Exported approval sheet %s for user=%s", record.number, actor.id,
        extra={"event_type": "document_export"},
    )
    return content, f"{record.number}.{renderer.extension}", renderer.mimetype


# ═══════════════════════════════════════════════════════════════
# Excel listings
# ═══════════════════════════════════════════════════════════════
PAYMENT_COLUMNS = [
    ("N° paiement", "payment_number", 18),
    ("Date", "date", 12),
    ("Fournisseur", "supplier", 28),
    ("Description", "description", 40),
    ("Facture", "invoice_number", 16),
    ("Mode", "payment_method", 12),
    ("Montant", "amount", 14),
    ("Statut", "status", 12),
    ("Encaissé le", "cashed_date", 12),
]


def export_payments_xlsx(actor, *, grant_id=None, status=None, search=None,
                         sort="date", direction="desc") -> bytes:
    ensure_permission(actor, "payments", "view")
    rows = Repository(Payment).get_all(grant_id=grant_id)
    rows = filter_records(rows, search_term=search, search_fields=PAYMENT_SEARCH_FIELDS, status=status)
    rows = sort_records(rows, sort, direction)

    wb = Workbook()
    ws = wb.active
    ws.title = "Paiements"
    for col, (header, _, width) in enumerate(PAYMENT_COLUMNS, start=1):
        cell = ws.cell(row=1, column=col, value=header)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        ws.column_dimensions[get_column_letter(col)].width = width

    for row_i, payment in enumerate(rows, start=2):
        for col, (_, attr, _) in enumerate(PAYMENT_COLUMNS, start=1):
            value = getattr(payment, attr)
            if attr == "status":
                value = STATUS_LABELS.get(value, value)
            cell = ws.cell(row=row_i, column=col, value=value)
            cell.border = THIN_BORDER
            if attr == "amount":
                cell.number_format = "#,##0.00"
                cell.alignment = Alignment(horizontal="right")
            elif attr in ("date", "cashed_date") and value:
                cell.number_format = "DD/MM/YYYY"

    total_row = len(rows) + 2
    ws.cell(row=total_row, column=6, value="Total").font = Font(bold=True)
    total = ws.cell(row=total_row, column=7, value=round(sum(p.amount for p in rows), 2))
    total.font = Font(bold=True)
    total.number_format = "#,##0.00"

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    return buf.getvalue()
