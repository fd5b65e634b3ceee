import asyncio
import time
from pathlib import Path

import structlog
from jinja2 import Environment, FileSystemLoader
from weasyprint import HTML

from qorinti.config import settings
from qorinti.metrics import RECEIPT_RENDER_DURATION
from qorinti.models.enums import DocumentType

logger = structlog.get_logger()

TEMPLATE_DIR = Path(__file__).parent / "templates"

if not TEMPLATE_DIR.exists():
    import warnings
    warnings.warn(f"Templates directory not found: {TEMPLATE_DIR}")

# autoescape: driver names and references are user supplied
_jinja_env = Environment(loader=FileSystemLoader(str(TEMPLATE_DIR)), autoescape=True)

DOCUMENT_LABELS = {
    DocumentType.INVOICE: "Factura",
    DocumentType.RECEIPT: "Boleta",
}


def _document_label(value) -> str:
    return DOCUMENT_LABELS.get(DocumentType(value), str(value))


def _money(value) -> str:
    return f"{settings.CURRENCY} {value:,.2f}"


_jinja_env.globals["document_label"] = _document_label
_jinja_env.filters["money"] = _money


def render_receipt_html(receipt_data: dict) -> str:
    template = _jinja_env.get_template("receipt.html")
    return template.render(
        issuer={
            "tax_id": settings.ISSUER_TAX_ID,
            "legal_name": settings.ISSUER_LEGAL_NAME,
            "trade_name": settings.ISSUER_TRADE_NAME,
            "address": settings.ISSUER_ADDRESS,
        },
        **receipt_data,
    )


async def render_receipt_pdf(receipt_data: dict) -> bytes:
    """Render a commission payment receipt to PDF bytes.

    ``receipt_data`` carries document_type, series_number, issue_date,
    payee_name, payee_document, amount and reference. Nothing is uploaded.
    """
    html_content = render_receipt_html(receipt_data)

    started = time.monotonic()
    pdf_bytes = await asyncio.wait_for(
        asyncio.to_thread(lambda: HTML(string=html_content).write_pdf()),
        timeout=settings.RECEIPT_RENDER_TIMEOUT_SECONDS,
    )
    RECEIPT_RENDER_DURATION.observe(time.monotonic() - started)

    logger.info("receipt_pdf_rendered", series_number=receipt_data.get("series_number"))
    return pdf_bytes
