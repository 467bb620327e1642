"""
SQL 파라미터 치환 모듈

사람이 읽기 쉬운 `$name` 플레이스홀더를 PostgreSQL 위치 파라미터(`$1`, `$2`, ...)로 변환합니다.
배열 값은 `ARRAY[$i,...,$j]` 생성자로 펼쳐집니다.

사용 예시:
    sql, values = substitute(
        "SELECT * FROM t WHERE a = $id AND b = ANY($tags)",
        {'id': 5, 'tags': [1, 2, 3]},
    )
    # sql    == "SELECT * FROM t WHERE a = $1 AND b = ANY(ARRAY[$2,$3,$4])"
    # values == [5, 1, 2, 3]
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from sqldb.exception import MissingParameterError, ParameterError

PLACEHOLDER_RE = re.compile(r'\$([-_a-zA-Z0-9]+)')


@dataclass(frozen=True)
class Scalar:
    """단일 위치 파라미터로 바인딩되는 값 (리스트도 드라이버 배열 하나로 전달)"""
    value: Any


@dataclass(frozen=True)
class ArrayOf:
    """ARRAY[...] 생성자로 펼쳐지는 값 목록"""
    values: tuple

    def __init__(self, values):
        object.__setattr__(self, 'values', tuple(values))


def tag(value: Any) -> Scalar | ArrayOf:
    """파라미터 값을 Scalar/ArrayOf 로 태깅"""
    if isinstance(value, (Scalar, ArrayOf)):
        return value
    if isinstance(value, (list, tuple)):
        return ArrayOf(value)
    return Scalar(value)


def substitute(sql: str, params: Any) -> tuple[str, Any]:
    """
    `$name` 플레이스홀더를 위치 파라미터로 치환

    Args:
        sql: SQL 템플릿
        params: 위치 파라미터 시퀀스(list/tuple) 또는 이름 -> 값 매핑

    Returns:
        (치환된 SQL, 위치 파라미터 값 목록).
        params 가 이미 시퀀스면 입력을 그대로 반환합니다.

    Raises:
        ParameterError: sql 이 문자열이 아니거나 params 형식이 잘못된 경우
        MissingParameterError: 템플릿의 이름이 매핑에 없는 경우
    """
    if not isinstance(sql, str):
        raise ParameterError("SQL must be a string")
    if params is None:
        return sql, []
    if isinstance(params, (list, tuple)):
        return sql, params
    if not isinstance(params, Mapping):
        raise ParameterError("params must be a sequence or a mapping")

    bindings: dict[str, str] = {}
    values: list[Any] = []

    def bind(match: re.Match) -> str:
        name = match.group(1)
        if name not in bindings:
            if name not in params:
                raise MissingParameterError(name)
            tagged = tag(params[name])
            if isinstance(tagged, ArrayOf):
                start = len(values) + 1
                refs = ','.join(f'${n}' for n in range(start, start + len(tagged.values)))
                bindings[name] = f'ARRAY[{refs}]'
                values.extend(tagged.values)
            else:
                values.append(tagged.value)
                bindings[name] = f'${len(values)}'
        return bindings[name]

    return PLACEHOLDER_RE.sub(bind, sql), values


def build_call_sql(function_name: str, count: int) -> str:
    """저장 프로시저 호출 SQL 생성 (SELECT * FROM fn($1,...,$n))"""
    placeholders = ','.join(f'${n}' for n in range(1, count + 1))
    return f'SELECT * FROM {function_name}({placeholders})'
