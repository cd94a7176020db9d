# services/invoice_service.py
import asyncio
import logging
from datetime import datetime, timedelta
from io import BytesIO

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from app.core.config import settings
from app.core.store import DocumentStore
from app.models.transaction_model import PROCESSOR_LABELS, PaymentProcessor, utcnow
from app.utils.sms_templates import format_amount

logger = logging.getLogger("paynow.side_effects")

INVOICES = "invoices"

styles = getSampleStyleSheet()
title_style = ParagraphStyle(
    'InvoiceTitle',
    parent=styles['Heading1'],
    fontSize=26,
    spaceAfter=20,
    textColor=colors.HexColor("#1a1a1a"),
)
subtitle_style = ParagraphStyle(
    'InvoiceSubtitle',
    parent=styles['Normal'],
    fontSize=11,
    textColor=colors.grey,
)

REFERENCE_LABELS = {
    PaymentProcessor.MPESA.value: "M-Pesa Receipt",
    PaymentProcessor.STRIPE.value: "Card Payment ID",
    PaymentProcessor.PAYSTACK.value: "Paystack Reference",
    PaymentProcessor.PAYPAL.value: "PayPal Capture ID",
}


def payment_method_label(processor) -> str:
    try:
        return PROCESSOR_LABELS[PaymentProcessor(processor)]
    except ValueError:
        return "Unknown"


def _format_date(value) -> str:
    if isinstance(value, datetime):
        return value.strftime("%B %d, %Y")
    return utcnow().strftime("%B %d, %Y")


def render_invoice_pdf(transaction: dict) -> bytes:
    """A4 invoice with a single line item. Blocking; run it in an executor."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4, topMargin=1*inch, bottomMargin=1*inch)
    story = []

    processor = transaction.get("payment_processor")
    amount = format_amount(transaction.get("amount"), transaction.get("currency"))

    story.append(Paragraph("PayNow", title_style))
    story.append(Paragraph("INVOICE", subtitle_style))
    story.append(Spacer(1, 30))

    details = [
        ["Invoice Number", transaction["id"]],
        ["Date", _format_date(transaction.get("completed_at"))],
        [REFERENCE_LABELS.get(processor, "Receipt Number"), transaction.get("receipt_number") or "N/A"],
    ]
    story.append(Table(details, colWidths=[2.2*inch, 4.3*inch]))
    story.append(Spacer(1, 20))

    story.append(Paragraph("<b>Bill To</b>", styles["Normal"]))
    bill_to = [
        ["Name", transaction.get("payer_name") or "Customer"],
        ["Phone", transaction.get("payer_phone") or "N/A"],
        ["Email", transaction.get("payer_email") or "N/A"],
    ]
    story.append(Table(bill_to, colWidths=[2.2*inch, 4.3*inch]))
    story.append(Spacer(1, 30))

    items = [
        ["Description", "Amount"],
        [transaction.get("description") or "Payment", amount],
        ["Total", amount],
    ]
    table = Table(items, colWidths=[4.5*inch, 2*inch])
    table.setStyle(TableStyle([
        ('BACKGROUND', (0,0), (-1,0), colors.HexColor("#f0f0f0")),
        ('FONTNAME', (0,0), (-1,0), 'Helvetica-Bold'),
        ('FONTNAME', (0,-1), (-1,-1), 'Helvetica-Bold'),
        ('ALIGN', (1,0), (1,-1), 'RIGHT'),
        ('LINEABOVE', (0,-1), (-1,-1), 1, colors.black),
        ('GRID', (0,0), (-1,-2), 0.5, colors.grey),
        ('BOTTOMPADDING', (0,0), (-1,-1), 8),
    ]))
    story.append(table)
    story.append(Spacer(1, 30))

    payment_info = f"""
    <font size="12"><b>Payment Information</b></font><br/>
    Payment Method: {payment_method_label(processor)}<br/>
    Payment Status: {"Paid" if transaction.get("status") == "success" else "Pending"}
    """
    story.append(Paragraph(payment_info, styles["Normal"]))
    story.append(Spacer(1, 60))

    footer = """
    <font size="10" color="grey">
    Thank you for your business!<br/>
    This is a computer-generated document and requires no signature.
    </font>
    """
    story.append(Paragraph(footer, ParagraphStyle('Footer', alignment=1)))

    doc.build(story)
    return buffer.getvalue()


class InvoiceService:
    """Renders the invoice, uploads it to Firebase Storage and records where it lives."""

    def __init__(self, store: DocumentStore, bucket=None):
        self.store = store
        self._bucket = bucket

    @property
    def bucket(self):
        if self._bucket is None:
            from app.core.firebase import get_bucket
            self._bucket = get_bucket()
        return self._bucket

    def _upload(self, pdf: bytes, path: str) -> str:
        blob = self.bucket.blob(path)
        blob.upload_from_string(pdf, content_type="application/pdf")
        return blob.generate_signed_url(
            expiration=timedelta(days=settings.INVOICE_URL_TTL_DAYS),
            version="v4",
        )

    async def generate(self, transaction: dict) -> str:
        transaction_id = transaction["id"]
        owner = transaction.get("owner_uid") or "unknown"
        path = f"invoices/{owner}/{transaction_id}.pdf"

        loop = asyncio.get_running_loop()
        pdf = await loop.run_in_executor(None, render_invoice_pdf, transaction)
        url = await loop.run_in_executor(None, self._upload, pdf, path)
        logger.info(f"🧾 Invoice uploaded for {transaction_id} → {path}")

        await self.store.set(INVOICES, transaction_id, {
            "transaction_id": transaction_id,
            "merchant_id": owner,
            "customer_id": transaction.get("payer_phone") or transaction.get("payer_email") or "unknown",
            "customer_name": transaction.get("payer_name") or "Customer",
            "customer_email": transaction.get("payer_email") or "",
            "amount": transaction.get("amount") or 0,
            "currency": transaction.get("currency") or settings.DEFAULT_CURRENCY,
            "description": transaction.get("description") or "Payment",
            "status": transaction.get("status"),
            "payment_processor": transaction.get("payment_processor"),
            "receipt_number": transaction.get("receipt_number"),
            "invoice_url": url,
            "storage_path": path,
            "created_at": utcnow(),
        })
        await self.store.set("transactions", transaction_id, {
            "invoice_url": url,
            "has_invoice": True,
            "updated_at": utcnow(),
        }, merge=True)
        return url
