import logging
logger = logging.getLogger("paynow.side_effects")

# ==========================
# RECEIPT TEMPLATES
# ==========================
RECEIPT_TEMPLATES = {
    "payment_confirmation": """
Hi {customer_name},

Your payment of {amount} for {description} was successful.

Receipt number: {receipt_number}
Payment method: {payment_method}
Transaction ID: {transaction_id}
Date: {date}

{invoice_text}

Thank you for using PayNow.
""",
}

# ==========================
# HTML VERSIONS
# ==========================
HTML_RECEIPTS = {
    "payment_confirmation": """
    <div style="font-family: 'Inter', sans-serif; max-width: 480px; margin: 40px auto; padding: 32px; background: #FFFFFF; color: #111827; border-radius: 16px; border: 1px solid #E5E7EB;">
      <p style="margin:0; font-size:14px; color:#16A34A; text-transform:uppercase; letter-spacing:1px;">Payment Confirmed</p>
      <h2 style="margin:16px 0; font-weight:600; font-size:24px;">{amount}</h2>
      <p style="margin:0; font-size:15px; color:#4B5563;">Hi <strong>{customer_name}</strong>, thank you for your payment for {description}.</p>

      <div style="margin:32px 0; padding:20px; background:#F9FAFB; border-radius:12px;">
        <table style="width:100%; font-size:14px; color:#4B5563;">
          <tr><td style="padding:4px 0;">Receipt</td><td style="text-align:right; color:#111827;">{receipt_number}</td></tr>
          <tr><td style="padding:4px 0;">Payment method</td><td style="text-align:right; color:#111827;">{payment_method}</td></tr>
          <tr><td style="padding:4px 0;">Transaction ID</td><td style="text-align:right; color:#111827;">{transaction_id}</td></tr>
          <tr><td style="padding:4px 0;">Date</td><td style="text-align:right; color:#111827;">{date}</td></tr>
        </table>
      </div>

      {invoice_button}

      <p style="margin:0; font-size:13px; color:#9CA3AF; text-align:center;">Thank you for using PayNow.</p>
    </div>
    """,
}

INVOICE_BUTTON = """
      <div style="text-align:center; margin:32px 0;">
        <a href="{invoice_url}" style="background:#111827; color:#FFFFFF; padding:14px 32px; border-radius:12px; text-decoration:none; font-weight:600; display:inline-block;">
          Download Invoice
        </a>
      </div>
"""


def generate_receipt_content(template_key: str, context: dict, use_html: bool = True) -> str:
    template = HTML_RECEIPTS.get(template_key) if use_html else RECEIPT_TEMPLATES.get(template_key)
    if not template:
        logger.warning(f"Unknown receipt template {template_key}")
        return "Receipt details not found."

    invoice_url = context.get("invoice_url")
    context = {
        **context,
        "invoice_button": INVOICE_BUTTON.format(invoice_url=invoice_url) if invoice_url else "",
        "invoice_text": f"Your invoice is available at: {invoice_url}" if invoice_url else "",
    }
    return template.format(**context)
