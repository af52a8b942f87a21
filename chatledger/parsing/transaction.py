import re

from loguru import logger

from chatledger.models.schemas import ParsedTransaction

CURRENCY_WORDS = r"(?:dollars?|bucks?|usd|ntd|nt\$|twd|元|塊)"

# A number with optional thousands separators and decimals, optionally
# prefixed by a currency sign and/or followed by a currency word. Numbers glued
# to letters on either side ("o1", "3rd", "4g") are not amounts.
AMOUNT_PATTERN = re.compile(
    rf"(?P<prefix>\$|nt\$)?\s*(?<![A-Za-z0-9_.,])(?P<number>\d{{1,3}}(?:,\d{{3}})+(?:\.\d+)?|\d+(?:\.\d+)?)"
    rf"(?:\s*(?P<suffix>{CURRENCY_WORDS}))?(?![A-Za-z0-9]|[.,]\d)",
    re.IGNORECASE,
)

INCOME_PATTERN = re.compile(
    r"\b(?:income|salary|paycheck|payday|wages?|bonus|dividends?|interest|earned|received|refund)\b",
    re.IGNORECASE,
)

LEADING_BOILERPLATE = re.compile(
    r"^(?:(?:i|today|yesterday|just|have|has|had|spent|spend|paid|pay|bought|buy|got|"
    r"received|earned|income|expense|cost|costs|on|for|a|an|the)\b[\s,:]*)+",
    re.IGNORECASE,
)

# Checked in order; the first keyword contained in the text wins.
CATEGORY_KEYWORDS: list[tuple[str, str]] = [
    ("breakfast", "food"),
    ("lunch", "food"),
    ("dinner", "food"),
    ("brunch", "food"),
    ("meal", "food"),
    ("coffee", "food"),
    ("snack", "food"),
    ("restaurant", "food"),
    ("groceries", "food"),
    ("grocery", "food"),
    ("food", "food"),
    ("taxi", "transport"),
    ("uber", "transport"),
    ("bus", "transport"),
    ("train", "transport"),
    ("metro", "transport"),
    ("subway", "transport"),
    ("fuel", "transport"),
    ("gas", "transport"),
    ("parking", "transport"),
    ("transport", "transport"),
    ("shopping", "shopping"),
    ("clothes", "shopping"),
    ("shoes", "shopping"),
    ("book", "shopping"),
    ("amazon", "shopping"),
    ("movie", "entertainment"),
    ("cinema", "entertainment"),
    ("game", "entertainment"),
    ("concert", "entertainment"),
    ("netflix", "entertainment"),
    ("doctor", "medical"),
    ("medicine", "medical"),
    ("pharmacy", "medical"),
    ("hospital", "medical"),
    ("clinic", "medical"),
    ("tuition", "education"),
    ("course", "education"),
    ("school", "education"),
    ("rent", "housing"),
    ("electricity", "utilities"),
    ("water bill", "utilities"),
    ("utilities", "utilities"),
    ("phone", "telecom"),
    ("internet", "telecom"),
    ("mobile", "telecom"),
    ("salary", "salary"),
    ("paycheck", "salary"),
    ("wage", "salary"),
    ("bonus", "bonus"),
    ("income", "income"),
]

FALLBACK_LABEL_LENGTH = 12


def _pick_amount(text: str) -> re.Match | None:
    matches = list(AMOUNT_PATTERN.finditer(text))
    if not matches:
        return None
    for m in matches:
        if m.group("prefix") or m.group("suffix"):
            return m
    return matches[0]


def _clean_description(text: str) -> str:
    description = AMOUNT_PATTERN.sub(" ", text)
    description = re.sub(rf"\b{CURRENCY_WORDS}\b", " ", description, flags=re.IGNORECASE)
    description = re.sub(r"\s+", " ", description).strip(" ,.:;-")
    description = LEADING_BOILERPLATE.sub("", description).strip(" ,.:;-")
    return description


def categorize(description: str, text: str, kind: str) -> str:
    haystacks = [description.lower(), text.lower()]
    for keyword, category in CATEGORY_KEYWORDS:
        if any(keyword in h for h in haystacks):
            return category
    if description:
        return description.split()[0][:FALLBACK_LABEL_LENGTH].lower()
    return "income" if kind == "income" else "other"


def parse_transaction_text(text: str) -> ParsedTransaction | None:
    """Best-effort heuristic parse of a chat message such as ``"lunch 150"``.

    Returns ``None`` when the text carries no amount at all; that is the normal
    "not a transaction" outcome, not an error. The amount is not validated here,
    so ``"lunch 0"`` still yields a candidate for the caller to reject.
    """
    cleaned = re.sub(r"\s+", " ", text.strip())
    match = _pick_amount(cleaned)
    if match is None:
        return None

    amount = float(match.group("number").replace(",", ""))
    kind = "income" if INCOME_PATTERN.search(cleaned) else "expense"
    description = _clean_description(cleaned)
    category = categorize(description, cleaned, kind)

    parsed = ParsedTransaction(
        amount=amount,
        category=category,
        description=description or None,
        kind=kind,
    )
    logger.debug("Heuristic parse {!r} -> {}", text, parsed)
    return parsed
