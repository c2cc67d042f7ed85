import logging
import math
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from analytics import days_ago, expense_filters, grouped_totals, months_ago, totals
from auth import get_current_user
from database import Expense, User, get_db, utcnow
from errors import NotFoundError
from schemas import ExpenseCreate, ExpenseOut, ExpenseUpdate, RecentExpense

logger = logging.getLogger(__name__)

router = APIRouter()

SORT_COLUMNS = {
    "date": Expense.date,
    "amount": Expense.amount,
    "title": Expense.title,
    "category": Expense.category,
    "createdAt": Expense.created_at,
}


def get_owned_expense(db: Session, user_id: int, expense_id: int) -> Expense:
    # Someone else's expense is indistinguishable from a missing one.
    expense = (
        db.query(Expense)
        .filter(Expense.id == expense_id, Expense.user_id == user_id)
        .first()
    )
    if not expense:
        raise NotFoundError("Expense not found")
    return expense


@router.get("/expenses")
def get_expenses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    category: Optional[str] = None,
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: Literal["date", "amount", "title", "category", "createdAt"] = Query(
        "date", alias="sortBy"
    ),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conditions = expense_filters(
        current_user.id,
        category=category,
        start_date=start_date,
        end_date=end_date,
        search=search,
    )
    column = SORT_COLUMNS[sort_by]
    ordering = column.desc() if sort_order == "desc" else column.asc()

    expenses = (
        db.query(Expense)
        .filter(*conditions)
        .order_by(ordering, Expense.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    summary = totals(db, conditions)

    return {
        "success": True,
        "data": {
            "expenses": [ExpenseOut.model_validate(e) for e in expenses],
            "pagination": {
                "currentPage": page,
                "totalPages": math.ceil(summary["count"] / limit),
                "totalItems": summary["count"],
                "itemsPerPage": limit,
            },
            "summary": {
                "totalAmount": summary["total"],
                "totalExpenses": summary["count"],
                "categoryStats": grouped_totals(db, conditions, ["category"]),
            },
        },
    }


@router.get("/expenses/stats")
def get_expense_stats(
    period: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    owned = expense_filters(current_user.id)
    in_period = owned + [Expense.date >= days_ago(period)]
    summary = totals(db, in_period)

    recent = (
        db.query(Expense)
        .filter(*owned)
        .order_by(Expense.date.desc(), Expense.id.desc())
        .limit(5)
        .all()
    )

    return {
        "success": True,
        "data": {
            "summary": {
                "totalAmount": summary["total"],
                "totalCount": summary["count"],
                "period": period,
            },
            "categoryStats": grouped_totals(db, in_period, ["category"]),
            "monthlyTrend": grouped_totals(
                db,
                owned + [Expense.date >= months_ago(6)],
                ["year", "month"],
                order=("year", "month"),
            ),
            "recentExpenses": [RecentExpense.model_validate(e) for e in recent],
        },
    }


@router.get("/expenses/{expense_id}")
def get_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    expense = get_owned_expense(db, current_user.id, expense_id)
    return {"success": True, "data": {"expense": ExpenseOut.model_validate(expense)}}


@router.post("/expenses", status_code=status.HTTP_201_CREATED)
def create_expense(
    payload: ExpenseCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    expense = Expense(
        user_id=current_user.id,
        title=payload.title,
        amount=payload.amount,
        date=payload.date or utcnow(),
        category=payload.category.value,
        tags=list(payload.tags),
        notes=payload.notes,
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)
    logger.info(
        "Expense %s created for user %s", expense.id, current_user.id,
        extra={"component": "expenses"},
    )
    return {
        "success": True,
        "message": "Expense created successfully",
        "data": {"expense": ExpenseOut.model_validate(expense)},
    }


@router.put("/expenses/{expense_id}")
def update_expense(
    expense_id: int,
    payload: ExpenseUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    expense = get_owned_expense(db, current_user.id, expense_id)
    for field, value in payload.changes().items():
        setattr(expense, field, value)
    db.commit()
    db.refresh(expense)
    return {
        "success": True,
        "message": "Expense updated successfully",
        "data": {"expense": ExpenseOut.model_validate(expense)},
    }


@router.delete("/expenses/{expense_id}")
def delete_expense(
    expense_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    expense = get_owned_expense(db, current_user.id, expense_id)
    db.delete(expense)
    db.commit()
    logger.info(
        "Expense %s deleted for user %s", expense_id, current_user.id,
        extra={"component": "expenses"},
    )
    return {"success": True, "message": "Expense deleted successfully"}
