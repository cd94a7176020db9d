from app.core.config import settings

SMS_TEMPLATES = {
    # Payment received
    "payment_received": (
        "Thank you for your payment of {currency} {amount} for {description}! "
        "Your transaction was successful. Receipt: {receipt}. Transaction ID: {short_id}."
        "{invoice_line} Thank you for using PayNow."
    ),
    "invoice_line": " Your invoice is available at: {invoice_url}",

    # Payment link reminders, one per tier
    "first": "Reminder: You have a pending payment of {amount} for {description}. Pay easily via M-Pesa: {link}",
    "second": "Second reminder: Your payment of {amount} for {description} is still pending. Please complete your payment: {link}",
    "final": "Final reminder: Please complete your pending payment of {amount} for {description}. Pay now: {link}",
    "manual": "Reminder: You have a pending payment of {amount} for {description}. Pay now: {link}",
}


def format_amount(amount, currency=None) -> str:
    value = float(amount or 0)
    text = f"{value:,.0f}" if value.is_integer() else f"{value:,.2f}"
    return f"{currency or settings.DEFAULT_CURRENCY} {text}"


def payment_received_sms(transaction: dict) -> str:
    invoice_url = transaction.get("invoice_url")
    return SMS_TEMPLATES["payment_received"].format(
        currency=transaction.get("currency") or settings.DEFAULT_CURRENCY,
        amount=transaction.get("amount"),
        description=transaction.get("description") or "your order",
        receipt=transaction.get("receipt_number") or "N/A",
        short_id=transaction["id"][:8],
        invoice_line=SMS_TEMPLATES["invoice_line"].format(invoice_url=invoice_url) if invoice_url else "",
    )


def reminder_sms(link: dict, tier: str) -> str:
    template = SMS_TEMPLATES.get(tier, SMS_TEMPLATES["manual"])
    return template.format(
        amount=format_amount(link.get("amount"), link.get("currency")),
        description=link.get("description") or "your payment",
        link=f"{settings.PAYLINK_BASE_URL.rstrip('/')}/{link.get('slug')}",
    )
