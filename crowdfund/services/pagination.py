from typing import Callable, Dict

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from crowdfund.core.errors import ValidationError
from crowdfund.schemas.common import Page, PageParams


def apply_sort(stmt: Select, params: PageParams, sort_columns: Dict[str, object]) -> Select:
    column = sort_columns.get(params.sort_by)
    if column is None:
        raise ValidationError(
            f"Invalid sort field: {params.sort_by}. Allowed: {', '.join(sorted(sort_columns))}"
        )
    return stmt.order_by(column.asc() if params.sort_dir == "asc" else column.desc())


def paginate(
    db: Session,
    stmt: Select,
    params: PageParams,
    sort_columns: Dict[str, object],
    mapper: Callable,
) -> Page:
    """Run ``stmt`` for one page and wrap the mapped rows with pagination info"""
    ordered = apply_sort(stmt, params, sort_columns)
    total = db.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    rows = db.execute(ordered.offset(params.offset).limit(params.size)).scalars().all()
    return Page.build([mapper(row) for row in rows], params, total)
