"""
sqldb: PostgreSQL 비동기 데이터 접근 패키지

사용 예시:
    from sqldb import transactional, get_transaction, get_db
    from sqldb.registry import DatabaseRegistry
    from sqldb.config import load_config

    # 초기화 (config에서)
    await DatabaseRegistry.init_from_config(load_config())
    db = get_db('default')

    # 이름 파라미터 쿼리 (배열은 ARRAY[...] 로 펼쳐짐)
    rows = (await db.query(
        "SELECT * FROM jobs WHERE id = ANY($ids) AND owner = $owner",
        {'ids': [1, 2, 3], 'owner': 'kim'},
    )).rows

    # 트랜잭션 데코레이터
    @transactional(db)
    async def create_job(name):
        tx = get_transaction('default')
        return await tx.query_one_row("INSERT INTO jobs (name) VALUES ($name) RETURNING id", {'name': name})

    # 수동 트랜잭션
    async with db.transaction() as tx:
        await tx.query("DELETE FROM jobs WHERE id = $id", {'id': 1})
"""

from sqldb.cardinality import exactly_one, zero_or_one
from sqldb.context import get_transaction, transactional
from sqldb.database import SqlDatabase
from sqldb.exception import (
    BeginError,
    CardinalityError,
    CloseError,
    ConnectError,
    DatabaseError,
    EndError,
    IdleConnectionError,
    InvalidParametersError,
    InvalidTransactionStateError,
    MissingParameterError,
    ParameterError,
    PoolConfigError,
    PoolError,
    PoolNotOpenError,
    QueryFailedError,
    TransactionError,
)
from sqldb.params import ArrayOf, Scalar, substitute
from sqldb.pool import RETRY_DELAYS, PoolManager, PooledClient
from sqldb.query import QueryResult
from sqldb.registry import DatabaseRegistry, get_db
from sqldb.transaction import Transaction, TransactionStatus

__all__ = [
    'SqlDatabase',
    'DatabaseRegistry',
    'get_db',
    'transactional',
    'get_transaction',
    'PoolManager',
    'PooledClient',
    'RETRY_DELAYS',
    'QueryResult',
    'Transaction',
    'TransactionStatus',
    'Scalar',
    'ArrayOf',
    'substitute',
    'exactly_one',
    'zero_or_one',
    'DatabaseError',
    'ParameterError',
    'MissingParameterError',
    'InvalidParametersError',
    'PoolError',
    'PoolNotOpenError',
    'PoolConfigError',
    'ConnectError',
    'CloseError',
    'IdleConnectionError',
    'QueryFailedError',
    'CardinalityError',
    'TransactionError',
    'InvalidTransactionStateError',
    'BeginError',
    'EndError',
]
