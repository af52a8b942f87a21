import re
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

_NUMBER = r"(-?\d+(?:\.\d+)?)"
_COLON = r"\s*[:：]\s*"
# Labels may share a line; a value ends before any letter or further digit.
_END = r"(?![A-Za-z]|\.?\d)"

DAILY_PATTERN = re.compile(rf"\bdaily\s+budget{_COLON}{_NUMBER}{_END}", re.IGNORECASE)
WEEKLY_PATTERN = re.compile(rf"\bweekly\s+budget{_COLON}{_NUMBER}{_END}", re.IGNORECASE)
MONTHLY_PATTERN = re.compile(rf"\bmonthly\s+budget{_COLON}{_NUMBER}{_END}", re.IGNORECASE)

GOAL_PATTERN = re.compile(
    r"^\s*(?:set\s+)?savings\s+goal(?:\s*[:：]\s*|\s+)(?P<title>[^\d]+?)\s+(?P<target>-?\d+(?:\.\d+)?)(?:\s+(?P<rest>.+))?\s*$",
    re.IGNORECASE,
)
DATE_PATTERN = re.compile(r"(\d{4})[-/](\d{1,2})[-/](\d{1,2})")

BUDGET_TEMPLATE = "Daily budget: 1000\nWeekly budget: 5000\nMonthly budget: 20000"


@dataclass
class BudgetThresholds:
    daily: float
    weekly: float
    monthly: float


@dataclass
class GoalRequest:
    title: str
    target_amount: float
    deadline: datetime | None = None


def parse_budget_message(message: str) -> BudgetThresholds | None:
    """Parse the daily/weekly/monthly budget template.

    The three labels usually come one per line but may share a single line.
    Every label is required; a missing, non-numeric or negative value rejects
    the whole message.
    """
    daily = DAILY_PATTERN.search(message)
    weekly = WEEKLY_PATTERN.search(message)
    monthly = MONTHLY_PATTERN.search(message)
    if not daily or not weekly or not monthly:
        return None

    values = [float(m.group(1)) for m in (daily, weekly, monthly)]
    if any(v < 0 for v in values):
        logger.warning("Rejected budget with negative values: {}", values)
        return None
    return BudgetThresholds(*values)


def parse_deadline(token: str | None) -> datetime | None:
    if not token:
        return None
    m = DATE_PATTERN.search(token)
    if not m:
        return None
    try:
        return datetime(int(m.group(1)), int(m.group(2)), int(m.group(3)))
    except ValueError:
        logger.warning("Ignoring invalid goal deadline {!r}", token)
        return None


def parse_savings_goal_message(message: str) -> GoalRequest | None:
    """Parse ``savings goal <title> <target> [YYYY-MM-DD]``."""
    m = GOAL_PATTERN.match(message.strip())
    if not m:
        return None

    title = m.group("title").strip(" :：")
    target = float(m.group("target"))
    if not title or target <= 0:
        logger.warning("Rejected savings goal title={!r} target={}", title, target)
        return None
    return GoalRequest(title=title, target_amount=target, deadline=parse_deadline(m.group("rest")))
