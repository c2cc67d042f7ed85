import csv
import logging
from datetime import date
from io import StringIO
from typing import List, Literal, Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from analytics import days_ago, expense_filters, grouped_totals, months_ago, totals
from auth import get_current_user
from database import Expense, User, get_db, utcnow
from emailer import send_csv_report_email
from errors import EmailDeliveryError, NotFoundError
from schemas import ReportFilters

logger = logging.getLogger(__name__)

report_router = APIRouter()

CSV_COLUMNS = ["Date", "Title", "Amount", "Category", "Tags", "Notes", "Created At"]
NO_EXPENSES = "No expenses found for the specified criteria"

GROUPINGS = {
    "month": ["year", "month"],
    "day": ["year", "month", "day"],
    "category": ["category"],
    "none": [],
}


def _percent_change(current: float, previous: float) -> float:
    if previous <= 0:
        return 0
    return round((current - previous) / previous * 100, 1)


@report_router.get("/summary")
def get_expense_summary(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    category: Optional[str] = None,
    group_by: Literal["month", "day", "category", "none"] = Query("month", alias="groupBy"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conditions = expense_filters(
        current_user.id, category=category, start_date=start_date, end_date=end_date
    )
    overall = totals(db, conditions)

    breakdown = grouped_totals(db, conditions, ["category"])
    for item in breakdown:
        share = item["total"] / overall["total"] * 100 if overall["total"] > 0 else 0
        item["percentage"] = round(share, 2)

    return {
        "success": True,
        "data": {
            "summary": {
                "totalAmount": overall["total"],
                "totalCount": overall["count"],
                "averageAmount": overall["average"],
                "minAmount": overall["min"],
                "maxAmount": overall["max"],
            },
            "groupedData": grouped_totals(db, conditions, GROUPINGS[group_by]),
            "categoryBreakdown": breakdown,
            "filters": {
                "startDate": start_date,
                "endDate": end_date,
                "category": category,
                "groupBy": group_by,
            },
        },
    }


@report_router.get("/trends")
def get_expense_trends(
    period: int = Query(6, ge=1, le=120),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    conditions = expense_filters(current_user.id) + [Expense.date >= months_ago(period)]
    return {
        "success": True,
        "data": {
            "monthlyTrends": grouped_totals(
                db, conditions, ["year", "month"], order=("year", "month")
            ),
            "categoryTrends": grouped_totals(
                db,
                conditions,
                ["category", "year", "month"],
                order=("year", "month", "-total"),
            ),
            "topCategories": grouped_totals(db, conditions, ["category"], limit=10),
            "period": period,
        },
    }


@report_router.get("/insights")
def get_expense_insights(
    period: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    owned = expense_filters(current_user.id)
    start = days_ago(period)
    previous_start = days_ago(2 * period)
    current_window = owned + [Expense.date >= start]
    previous_window = owned + [Expense.date >= previous_start, Expense.date < start]

    current = totals(db, current_window)
    previous = totals(db, previous_window)
    categories = grouped_totals(db, current_window, ["category"])

    total_change = _percent_change(current["total"], previous["total"])
    average_change = _percent_change(current["average"], previous["average"])
    if total_change > 0:
        trend = "increased"
    elif total_change < 0:
        trend = "decreased"
    else:
        trend = "unchanged"

    recommendations: List[str] = []
    if total_change > 20:
        recommendations.append(
            "Your spending has increased significantly. Consider reviewing your expenses."
        )
    top_category = categories[0] if categories else None
    if top_category and current["total"] > 0:
        share = round(top_category["total"] / current["total"] * 100, 1)
        if share > 40:
            recommendations.append(
                f"You're spending {share}% on {top_category['category']}. "
                "Consider diversifying your expenses."
            )

    def window(summary):
        return {k: summary[k] for k in ("total", "count", "average")}

    return {
        "success": True,
        "data": {
            "insights": {
                "spendingChange": {
                    "total": total_change,
                    "average": average_change,
                    "trend": trend,
                },
                "topCategory": top_category,
                "totalCategories": len(categories),
                "spendingPatterns": grouped_totals(
                    db, current_window, ["dayOfWeek", "hour"], order=("dayOfWeek", "hour")
                ),
                "recommendations": recommendations,
            },
            "currentPeriod": window(current),
            "previousPeriod": window(previous),
            "categoryInsights": categories,
            "period": period,
        },
    }


def _filtered_expenses(db: Session, user_id: int, filters: ReportFilters) -> List[Expense]:
    conditions = expense_filters(
        user_id,
        category=filters.category,
        start_date=filters.start_date,
        end_date=filters.end_date,
    )
    expenses = (
        db.query(Expense)
        .filter(*conditions)
        .order_by(Expense.date.desc(), Expense.id.desc())
        .all()
    )
    if not expenses:
        raise NotFoundError(NO_EXPENSES)
    return expenses


def build_csv(expenses: List[Expense]) -> str:
    csv_data = StringIO()
    writer = csv.writer(csv_data)
    writer.writerow(CSV_COLUMNS)
    for e in expenses:
        writer.writerow(
            [
                e.date.strftime("%Y-%m-%d"),
                e.title,
                f"{e.amount:.2f}",
                e.category,
                ", ".join(e.tags or []),
                e.notes or "",
                e.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            ]
        )
    return csv_data.getvalue()


def _csv_filename() -> str:
    return f"expenses_{utcnow().date().isoformat()}.csv"


@report_router.get("/detailed.csv")
def download_csv(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    category: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    filters = ReportFilters(start_date=start_date, end_date=end_date, category=category)
    content = build_csv(_filtered_expenses(db, current_user.id, filters))

    return StreamingResponse(
        iter([content]),
        media_type="text/csv",
        headers={
            "Content-Disposition": f'attachment; filename="{_csv_filename()}"',
            "Cache-Control": "no-cache",
            "Pragma": "no-cache",
        },
    )


@report_router.post("/send-csv")
def send_csv_report(
    filters: Optional[ReportFilters] = Body(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    filters = filters or ReportFilters()
    content = build_csv(_filtered_expenses(db, current_user.id, filters))

    try:
        send_csv_report_email(
            current_user.email, current_user.name or "User", content, _csv_filename()
        )
    except EmailDeliveryError as exc:
        raise EmailDeliveryError("Failed to send CSV report email") from exc
    logger.info("CSV report emailed to user %s", current_user.id, extra={"component": "reports"})
    return {"success": True, "message": "CSV report has been sent to your email"}
