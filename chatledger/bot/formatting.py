from chatledger.models.schemas import Transaction

CURRENCY = "$"

PERIOD_LABELS = {"daily": "Daily", "weekly": "Weekly", "monthly": "Monthly"}


def format_amount(amount: float) -> str:
    """Format amount with thousands separators, dropping zero cents."""
    if amount == int(amount):
        return f"{CURRENCY}{int(amount):,}"
    return f"{CURRENCY}{amount:,.2f}"


def format_transaction_line(t: Transaction) -> str:
    line = f"{format_amount(t.amount)} · {t.category}"
    if t.description:
        line += f" | {t.description}"
    return line
