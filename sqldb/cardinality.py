"""
결과 행 수 검증 (exactly one / zero or one)
"""

from typing import Any

from sqldb.exception import CardinalityError
from sqldb.query import QueryResult


def exactly_one(
    result: QueryResult,
    *,
    sql: str | None = None,
    params: Any = None,
    function_name: str | None = None,
) -> Any:
    """rowCount 가 정확히 1 인지 확인하고 해당 행 반환"""
    if result.row_count != 1:
        raise CardinalityError(result.row_count, 'exactly one', sql, params, function_name)
    return result.rows[0] if result.rows else None


def zero_or_one(
    result: QueryResult,
    *,
    sql: str | None = None,
    params: Any = None,
    function_name: str | None = None,
) -> Any | None:
    """rowCount 가 1 이하인지 확인하고 행(또는 None) 반환"""
    if result.row_count > 1:
        raise CardinalityError(result.row_count, 'zero or one', sql, params, function_name)
    return result.rows[0] if result.rows else None
