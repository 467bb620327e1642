"""
현재 태스크의 트랜잭션 컨텍스트

contextvars 를 사용하므로 asyncio 태스크마다 독립적입니다.

사용 예시:
    @transactional(db)
    async def create_user(name):
        tx = get_transaction('default')
        return await tx.query_one_row("INSERT INTO users (name) VALUES ($name) RETURNING id", {'name': name})
"""

import functools
from contextvars import ContextVar, Token
from typing import TYPE_CHECKING, Any

from sqldb.exception import TransactionError

if TYPE_CHECKING:
    from sqldb.database import SqlDatabase
    from sqldb.transaction import Transaction

_transactions: ContextVar[dict[str, 'Transaction']] = ContextVar('sqldb_transactions', default={})


def set_transaction(name: str, tx: 'Transaction') -> Token:
    """현재 컨텍스트에 트랜잭션 등록 (반환된 토큰으로 이전 상태 복원)"""
    current = dict(_transactions.get())
    current[name] = tx
    return _transactions.set(current)


def reset_transaction(token: Token) -> None:
    """set_transaction 이전 상태로 복원 (중첩 시 바깥 트랜잭션 유지)"""
    _transactions.reset(token)


def get_transaction(name: str = 'default') -> 'Transaction':
    """현재 컨텍스트의 트랜잭션 반환"""
    tx = _transactions.get().get(name)
    if tx is None:
        raise TransactionError(f"No active transaction for database '{name}'")
    return tx


def transactional(db: 'SqlDatabase'):
    """코루틴을 db 트랜잭션 안에서 실행하는 데코레이터"""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            async with db.transaction():
                return await func(*args, **kwargs)
        return wrapper
    return decorator
