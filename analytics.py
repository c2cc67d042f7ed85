"""
Filter building and grouped aggregation over the expenses table.

Every query here takes the list of conditions produced by expense_filters(),
which always starts with the owner condition, so no aggregate can mix users.
All sums, counts and averages are computed by the database.
"""

from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Sequence

from dateutil.relativedelta import relativedelta
from sqlalchemy import extract, func, or_, select
from sqlalchemy.orm import Session

from database import Expense, utcnow

GROUP_KEYS = {
    "category": Expense.category,
    "year": extract("year", Expense.date),
    "month": extract("month", Expense.date),
    "day": extract("day", Expense.date),
    "dayOfWeek": extract("dow", Expense.date),  # 0 = Sunday
    "hour": extract("hour", Expense.date),
}


def money(value) -> float:
    return round(float(value or 0), 2)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _tag_matches(pattern: str):
    # Match each tag on its own, never the serialized JSON array.
    tag = func.json_each(Expense.tags).table_valued("value").alias("tag")
    return select(tag.c.value).where(tag.c.value.ilike(pattern, escape="\\")).exists()


def expense_filters(
    user_id: int,
    category: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    search: Optional[str] = None,
) -> list:
    """Conditions for one user's expenses; date bounds are whole days, inclusive."""
    conditions = [Expense.user_id == user_id]

    if category and category != "all":
        conditions.append(Expense.category == category)
    if start_date:
        conditions.append(Expense.date >= datetime.combine(start_date, time.min))
    if end_date:
        conditions.append(Expense.date < datetime.combine(end_date + timedelta(days=1), time.min))
    if search and search.strip():
        pattern = f"%{_escape_like(search.strip())}%"
        conditions.append(
            or_(
                Expense.title.ilike(pattern, escape="\\"),
                Expense.notes.ilike(pattern, escape="\\"),
                _tag_matches(pattern),
            )
        )
    return conditions


def days_ago(days: int) -> datetime:
    return utcnow() - timedelta(days=days)


def months_ago(months: int) -> datetime:
    return utcnow() - relativedelta(months=months)


def totals(db: Session, conditions: list) -> Dict[str, float]:
    row = (
        db.query(
            func.sum(Expense.amount),
            func.count(Expense.id),
            func.avg(Expense.amount),
            func.min(Expense.amount),
            func.max(Expense.amount),
        )
        .filter(*conditions)
        .one()
    )
    return {
        "total": money(row[0]),
        "count": int(row[1] or 0),
        "average": money(row[2]),
        "min": money(row[3]),
        "max": money(row[4]),
    }


def grouped_totals(
    db: Session,
    conditions: list,
    keys: Sequence[str],
    order: Sequence[str] = ("-total",),
    limit: Optional[int] = None,
) -> List[dict]:
    """
    Sum, count and average per group.

    ``keys`` name entries of GROUP_KEYS; ``order`` names keys or "total",
    with a leading "-" for descending.
    """
    key_columns = {name: GROUP_KEYS[name].label(name) for name in keys}
    total = func.sum(Expense.amount).label("total")
    columns = dict(key_columns, total=total)

    query = db.query(
        *key_columns.values(),
        total,
        func.count(Expense.id).label("count"),
        func.avg(Expense.amount).label("average"),
    ).filter(*conditions)
    if keys:
        query = query.group_by(*(GROUP_KEYS[name] for name in keys))
    for name in order:
        column = columns[name.lstrip("-")]
        query = query.order_by(column.desc() if name.startswith("-") else column.asc())
    if limit:
        query = query.limit(limit)

    results = []
    for row in query.all():
        item = {}
        for name in keys:
            value = getattr(row, name)
            item[name] = value if name == "category" else int(value)
        item["total"] = money(row.total)
        item["count"] = int(row.count)
        item["average"] = money(row.average)
        results.append(item)
    return results
