"""
쿼리 실행 모듈

파라미터 치환 -> 드라이버 실행 -> 오류 정규화를 담당합니다.
커넥션 대여/반환은 호출측(SqlDatabase, Transaction)이 관리합니다.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

import asyncpg

from sqldb.exception import InvalidParametersError, ParameterError, QueryFailedError
from sqldb.params import build_call_sql, substitute
from sqldb.pool import PooledClient

logger = logging.getLogger(__name__)

DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

_NON_CODE_RE = re.compile(
    r"'(?:[^']|'')*'"
    r'|"(?:[^"]|"")*"'
    r'|\$((?:[A-Za-z_]\w*)?)\$.*?\$\1\$'
    r'|--[^\n]*'
    r'|/\*.*?\*/',
    re.DOTALL,
)


@dataclass
class QueryResult:
    """쿼리 실행 결과"""
    command: str
    row_count: int
    rows: list = field(default_factory=list)
    columns: list[str] = field(default_factory=list)


async def query_with_client(client: PooledClient, sql: str, params: Any = None) -> QueryResult:
    """
    대여한 커넥션으로 SQL 실행

    Args:
        client: 대여한 커넥션 (반환은 호출측 책임)
        sql: `$name` 또는 `$1` 플레이스홀더를 포함한 SQL
        params: 이름 -> 값 매핑 또는 위치 파라미터 시퀀스

    Raises:
        InvalidParametersError: 파라미터 치환 실패
        QueryFailedError: 드라이버 오류
    """
    _log_query(sql, params)
    try:
        processed_sql, values = substitute(sql, params)
    except ParameterError as e:
        raise InvalidParametersError(e.message, sql, params) from e

    try:
        result = await _run(client.connection, processed_sql, values)
    except DRIVER_ERRORS as e:
        raise QueryFailedError(
            str(e) or type(e).__name__,
            sql,
            params,
            sql_error=snapshot_error(e),
        ) from e

    _log_result(result.row_count)
    return result


async def call_with_client(client: PooledClient, function_name: str, params: Any) -> QueryResult:
    """저장 프로시저 호출 (SELECT * FROM fn($1,...))"""
    logger.debug(f"[CALL] {function_name} | params: {_debug_params(params)}")
    sql = build_call_sql(function_name, len(call_params(function_name, params)))
    return await query_with_client(client, sql, params)


def call_params(function_name: str, params: Any) -> list | tuple:
    """call 계열은 위치 파라미터만 허용"""
    if params is None:
        return []
    if not isinstance(params, (list, tuple)):
        raise InvalidParametersError(
            "Function call params must be a sequence",
            f"SELECT * FROM {function_name}(...)",
            params,
        )
    return params


async def _run(connection: Any, sql: str, values: Any) -> QueryResult:
    if not values and is_multi_statement(sql):
        # 준비된 문장은 단일 문장만 허용하므로 simple query 프로토콜로 실행
        command = await connection.execute(sql) or ''
        return QueryResult(command=command, row_count=parse_row_count(command, []))

    statement = await connection.prepare(sql)
    rows = await statement.fetch(*values)
    command = statement.get_statusmsg() or ''
    columns = [attr.name for attr in statement.get_attributes()]
    return QueryResult(
        command=command,
        row_count=parse_row_count(command, rows),
        rows=list(rows),
        columns=columns,
    )


def is_multi_statement(sql: str) -> bool:
    """문자열, 따옴표 식별자, 달러 인용, 주석을 제외하고 문장 구분자 ; 가 있는지 확인"""
    body = _NON_CODE_RE.sub(' ', sql).strip().rstrip(';').strip()
    return ';' in body


def parse_row_count(command: str, rows: list) -> int:
    """커맨드 태그에서 rowCount 추출 ('UPDATE 3' -> 3, 'INSERT 0 1' -> 1)"""
    parts = command.split()
    if len(parts) > 1 and parts[-1].isdigit():
        return int(parts[-1])
    return len(rows)


def snapshot_error(error: BaseException) -> dict[str, Any]:
    """드라이버 예외를 직렬화 가능한 dict 로 변환"""
    snapshot: dict[str, Any] = {'type': type(error).__name__}
    as_dict = getattr(error, 'as_dict', None)
    if callable(as_dict):
        for key, value in as_dict().items():
            snapshot[key] = value if isinstance(value, (str, int, float, bool)) else str(value)
    snapshot['message'] = str(error)
    return snapshot


def _debug_string(s: Any) -> str:
    if not isinstance(s, str):
        return 'NOT A STRING'
    s = s.replace('\n', '\\n')
    if len(s) > 78:
        s = s[:75] + '...'
    return f'"{s}"'


def _debug_params(params: Any) -> str:
    try:
        s = json.dumps(params, default=str)
    except (TypeError, ValueError):
        s = 'CANNOT JSON ENCODE'
    return _debug_string(s)


def _log_query(sql: str, params: Any = None) -> None:
    """SQL 쿼리 로깅"""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    sql_oneline = ' '.join(sql.split()) if isinstance(sql, str) else sql
    logger.debug(f"[SQL] {_debug_string(sql_oneline)} | params: {_debug_params(params)}")


def _log_result(row_count: int) -> None:
    """SQL 결과 로깅"""
    logger.debug(f"[SQL Result] {row_count} row(s)")
