import uuid
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

BUDGET_SCHEMA_VERSION = 2

# v1 documents were written with camelCase field names.
_LEGACY_BUDGET_FIELDS = {
    "userId": "owner_id",
    "totalBudget": "total_limit",
    "categoryBudgets": "category_limits",
    "dailyBudget": "daily_limit",
    "weeklyBudget": "weekly_limit",
    "monthlyBudget": "monthly_limit",
}


def new_id() -> str:
    return uuid.uuid4().hex


def to_cents(value: float) -> float:
    return round(float(value), 2)


class Transaction(BaseModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    amount: float
    category: str
    description: str | None = None
    kind: Literal["income", "expense"]
    date: datetime = Field(default_factory=datetime.now)
    group_expense_id: str | None = None
    group_role: Literal["contribution", "reimbursement"] | None = None
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("amount")
    @classmethod
    def _round_amount(cls, v: float) -> float:
        return to_cents(v)


class ParsedTransaction(BaseModel):
    """Unvalidated result of turning free text into a transaction candidate."""

    amount: float
    category: str
    description: str | None = None
    kind: Literal["income", "expense"] = "expense"
    date: datetime | None = None

    def render(self) -> str:
        amount = int(self.amount) if self.amount == int(self.amount) else self.amount
        return f"{self.description or self.category} {amount}"


class TransactionCreate(BaseModel):
    amount: float = Field(gt=0)
    category: str = Field(min_length=1)
    description: str | None = None
    kind: Literal["income", "expense"] = "expense"
    date: datetime | None = None

    @field_validator("amount")
    @classmethod
    def _round_amount(cls, v: float) -> float:
        return to_cents(v)


class LLMTransaction(TransactionCreate):
    confidence: float = Field(default=1.0, ge=0, le=1)


class Budget(BaseModel):
    schema_version: int = BUDGET_SCHEMA_VERSION
    owner_id: str
    month: str = Field(pattern=r"^\d{4}-\d{2}$")
    total_limit: float | None = Field(default=None, ge=0)
    category_limits: dict[str, float] = {}
    daily_limit: float | None = Field(default=None, ge=0)
    weekly_limit: float | None = Field(default=None, ge=0)
    monthly_limit: float | None = Field(default=None, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _migrate(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("schema_version", 1) >= BUDGET_SCHEMA_VERSION:
            return data
        migrated = {}
        for key, value in data.items():
            migrated[_LEGACY_BUDGET_FIELDS.get(key, key)] = value
        if migrated.get("category_limits") is None:
            migrated["category_limits"] = {}
        migrated["schema_version"] = BUDGET_SCHEMA_VERSION
        return migrated

    @property
    def effective_monthly_limit(self) -> float | None:
        if self.monthly_limit is not None:
            return self.monthly_limit
        return self.total_limit


class BudgetBreach(BaseModel):
    period: Literal["daily", "weekly", "monthly"]
    limit: float
    current: float
    category: str | None = None


class BudgetStatus(BaseModel):
    budget: Budget
    total_spent: float
    category_spent: dict[str, float]
    total_remaining: float | None = None
    category_remaining: dict[str, float] = {}


class SavingsGoal(BaseModel):
    id: str = Field(default_factory=new_id)
    owner_id: str
    title: str
    target_amount: float = Field(gt=0)
    current_amount: float = Field(default=0, ge=0)
    deadline: datetime | None = None
    completed: bool = False
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.now)


class GoalProgress(BaseModel):
    percentage: float
    remaining: float
    days_remaining: int | None = None


class Participant(BaseModel):
    member_id: str
    display_name: str | None = None
    paid: float = Field(default=0, ge=0)
    share: float = Field(default=0, ge=0)

    @property
    def label(self) -> str:
        return self.display_name or self.member_id[:8]


class GroupExpense(BaseModel):
    id: str = Field(default_factory=new_id)
    group_id: str
    creator_id: str
    total_amount: float = Field(gt=0)
    description: str | None = None
    participants: list[Participant] = []
    settled: bool = False
    settled_at: datetime | None = None
    transaction_ids: list[str] = []
    created_at: datetime = Field(default_factory=datetime.now)


class Settlement(BaseModel):
    from_member: str
    to_member: str
    amount: float
    from_name: str | None = None
    to_name: str | None = None


class SettleResult(BaseModel):
    settlements: list[Settlement]
    transaction_ids: list[str]
    owner_ids: list[str] = []


class User(BaseModel):
    id: str = Field(default_factory=new_id)
    line_user_id: str
    created_at: datetime = Field(default_factory=datetime.now)


PetStage = Literal["egg", "baby", "child", "adult", "sick", "dying", "dead"]
PetState = Literal["idle", "happy", "hungry", "eating"]


class Pet(BaseModel):
    owner_id: str
    name: str = "Ledger Chick"
    stage: PetStage = "egg"
    state: PetState = "idle"
    hunger: float = 50
    happiness: float = 50
    health: float = 100
    experience: int = 0
    level: int = 1
    last_fed_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)
    consecutive_days: int = 0
    total_transactions: int = 0


class InboundEvent(BaseModel):
    type: Literal["message", "postback"]
    source_user_id: str
    source_group_id: str | None = None
    reply_token: str
    text: str | None = None
    postback_data: str | None = None


class QuickAction(BaseModel):
    label: str
    data: str


class Reply(BaseModel):
    text: str
    quick_actions: list[QuickAction] = []


class ParseRequest(BaseModel):
    message: str


class ParseResponse(BaseModel):
    parsed: ParsedTransaction | None = None
    source: Literal["heuristic", "llm"] | None = None
