"""
Savings goal API endpoints
"""
from datetime import date, datetime

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from app.api.deps import get_current_user_id, get_db
from app.application.contributions import ApplyContributionUseCase
from app.application.errors import SavingsValidationError
from app.application.notifications import DbAchievementNotifier
from app.application.savings import (
    CreateSavingGoalUseCase,
    UpdateSavingGoalUseCase,
    get_savings_stats,
    get_user_goal,
    list_active_goals,
    list_completed_goals,
    list_contributions,
    list_goals_by_trip,
    list_user_goals,
    plan_savings,
)
from app.domain.savings_goal import CLIENT_METHODS, METHOD_MANUAL, manual_contribution_key
from app.infrastructure.db.models import Contribution, SavingsGoal
from app.utils.time import as_utc
from app.utils.validation import normalize_decimal_input, parse_amount


router = APIRouter(prefix="/api/v1/savings", tags=["savings"])


# === Request/Response models ===

class CreateSavingGoalRequest(BaseModel):
    title: str
    description: str | None = None
    target_amount: str
    frequency: str
    amount_per_frequency: str = "0"
    start_date: date | None = None
    target_date: date | None = None
    trip_id: str | None = None

    @field_validator("target_amount", "amount_per_frequency")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Dot or comma separator, at most 2 decimal places"""
        return str(parse_amount(v))


class UpdateSavingGoalRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    frequency: str | None = None
    amount_per_frequency: str | None = None
    target_date: date | None = None
    trip_id: str | None = None

    @field_validator("amount_per_frequency")
    @classmethod
    def validate_amount(cls, v: str | None) -> str | None:
        return None if v is None else str(parse_amount(v))


class AddContributionRequest(BaseModel):
    amount: str
    method: str = METHOD_MANUAL

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return normalize_decimal_input(str(v))


class CalculatePlanRequest(BaseModel):
    target_amount: str
    frequency: str
    target_date: date

    @field_validator("target_amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return str(parse_amount(v))


class SavingGoalResponse(BaseModel):
    id: int
    title: str
    description: str | None
    target_amount: str  # Decimal as string
    current_amount: str
    progress: str
    is_completed: bool
    frequency: str
    amount_per_frequency: str
    start_date: date | None
    target_date: date | None
    last_contribution: datetime | None
    trip_id: str | None


class ContributionResponse(BaseModel):
    id: int
    saving_id: int
    amount: str
    method: str
    status: str
    date: datetime
    transaction_id: int | None
    provider: str | None = None
    reference: str | None = None


def _goal_response(goal: SavingsGoal) -> SavingGoalResponse:
    return SavingGoalResponse(
        id=goal.id,
        title=goal.title,
        description=goal.description,
        target_amount=str(goal.target_amount),
        current_amount=str(goal.current_amount),
        progress=str(goal.progress),
        is_completed=goal.is_completed,
        frequency=goal.frequency,
        amount_per_frequency=str(goal.amount_per_frequency),
        start_date=goal.start_date,
        target_date=goal.target_date,
        last_contribution=as_utc(goal.last_contribution) if goal.last_contribution else None,
        trip_id=goal.trip_id,
    )


def _contribution_response(c: Contribution, provider: str | None = None, reference: str | None = None):
    return ContributionResponse(
        id=c.id,
        saving_id=c.saving_id,
        amount=str(c.amount),
        method=c.method,
        status=c.status,
        date=as_utc(c.date),
        transaction_id=c.transaction_id,
        provider=provider,
        reference=reference,
    )


# === Endpoints ===

@router.post("", status_code=201, response_model=SavingGoalResponse)
def create_saving_goal(
    req: CreateSavingGoalRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Create a savings goal"""
    goal = CreateSavingGoalUseCase(db).execute(user_id=user_id, **req.model_dump())
    return _goal_response(goal)


@router.get("")
def list_saving_goals(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    goals, pagination = list_user_goals(db, user_id, page, limit)
    return {"savings": [_goal_response(g) for g in goals], "pagination": pagination}


@router.get("/active", response_model=list[SavingGoalResponse])
def active_saving_goals(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return [_goal_response(g) for g in list_active_goals(db, user_id)]


@router.get("/completed", response_model=list[SavingGoalResponse])
def completed_saving_goals(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return [_goal_response(g) for g in list_completed_goals(db, user_id)]


@router.get("/trip/{trip_id}", response_model=list[SavingGoalResponse])
def saving_goals_by_trip(
    trip_id: str,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    return [_goal_response(g) for g in list_goals_by_trip(db, user_id, trip_id)]


@router.get("/stats")
def savings_stats(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    """Totals across goals, recent contributions, six-month trend"""
    return get_savings_stats(db, user_id)


@router.post("/tools/calculate-plan")
def calculate_plan(req: CalculatePlanRequest, user_id: int = Depends(get_current_user_id)):
    plan = plan_savings(req.target_amount, req.frequency, req.target_date)
    return {
        "frequency": plan.frequency,
        "amount_per_period": str(plan.amount_per_period),
        "total_periods": plan.total_periods,
        "estimated_completion": plan.estimated_completion,
    }


@router.get("/{goal_id}", response_model=SavingGoalResponse)
def get_saving_goal(goal_id: int, user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return _goal_response(get_user_goal(db, user_id, goal_id))


@router.put("/{goal_id}", response_model=SavingGoalResponse)
def update_saving_goal(
    goal_id: int,
    req: UpdateSavingGoalRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """Update descriptive / scheduling fields (amounts only move through contributions)"""
    goal = UpdateSavingGoalUseCase(db).execute(goal_id, user_id, **req.model_dump(exclude_unset=True))
    return _goal_response(goal)


@router.post("/{goal_id}/contributions", status_code=201)
def add_contribution(
    goal_id: int,
    req: AddContributionRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    """
    Client-submitted contribution (manual by default, or a provider method).
    A repeated Idempotency-Key on the same goal answers 409 without writing a
    second contribution.
    """
    if req.method not in CLIENT_METHODS:
        raise SavingsValidationError(f"Unsupported contribution method: {req.method}")

    engine = ApplyContributionUseCase(db, notifier=DbAchievementNotifier(db))
    result = engine.execute(
        goal_id=goal_id,
        amount=req.amount,
        method=req.method,
        idempotency_key=manual_contribution_key(goal_id, idempotency_key) if idempotency_key else None,
        user_id=user_id,
    )
    return {
        "contribution": _contribution_response(result.contribution),
        "saving": _goal_response(result.goal),
        "achievements": [{"title": a.title, "message": a.message} for a in result.achievements],
    }


@router.get("/{goal_id}/contributions")
def contribution_history(
    goal_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    rows, pagination = list_contributions(db, user_id, goal_id, page, limit)
    return {
        "contributions": [_contribution_response(c, provider, reference) for c, provider, reference in rows],
        "pagination": pagination,
    }
