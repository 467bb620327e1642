"""
트랜잭션 모듈

상태 전이: OPEN -> COMMITTED | ROLLED_BACK (종료 상태에서는 어떤 요청도 불가).
어떤 분기로 끝나든 대여한 커넥션은 정확히 한 번 반환됩니다.
"""

import logging
from enum import Enum
from typing import Any

from sqldb.cardinality import exactly_one, zero_or_one
from sqldb.context import reset_transaction, set_transaction
from sqldb.exception import (
    BeginError,
    DatabaseError,
    EndError,
    InvalidTransactionStateError,
    QueryFailedError,
)
from sqldb.pool import PoolManager, PooledClient
from sqldb.query import QueryResult, call_with_client, query_with_client

logger = logging.getLogger(__name__)


class TransactionStatus(str, Enum):
    """트랜잭션 상태"""
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled-back"


class Transaction:
    """대여한 커넥션 + 트랜잭션 상태"""

    def __init__(self, client: PooledClient):
        self._client = client
        self._status = TransactionStatus.OPEN

    @property
    def status(self) -> TransactionStatus:
        return self._status

    @property
    def is_open(self) -> bool:
        return self._status is TransactionStatus.OPEN

    @property
    def client(self) -> PooledClient:
        self._check_open('use client')
        return self._client

    def _check_open(self, operation: str) -> None:
        if self._status is not TransactionStatus.OPEN:
            raise InvalidTransactionStateError(self._status.value, operation)

    async def query(self, sql: str, params: Any = None) -> QueryResult:
        self._check_open('query')
        return await query_with_client(self._client, sql, params)

    async def query_one_row(self, sql: str, params: Any = None) -> Any:
        result = await self.query(sql, params)
        return exactly_one(result, sql=sql, params=params)

    async def query_zero_or_one_row(self, sql: str, params: Any = None) -> Any | None:
        result = await self.query(sql, params)
        return zero_or_one(result, sql=sql, params=params)

    async def call(self, function_name: str, params: Any = None) -> QueryResult:
        self._check_open('call')
        return await call_with_client(self._client, function_name, params)

    async def call_one_row(self, function_name: str, params: Any = None) -> Any:
        result = await self.call(function_name, params)
        return exactly_one(result, params=params, function_name=function_name)

    async def call_zero_or_one_row(self, function_name: str, params: Any = None) -> Any | None:
        result = await self.call(function_name, params)
        return zero_or_one(result, params=params, function_name=function_name)


async def rollback_with_client(client: PooledClient) -> None:
    """
    ROLLBACK 후 커넥션 반환

    롤백이 실패하면 트랜잭션 상태를 알 수 없으므로 커넥션을 폐기(discard)하고 예외를 다시 발생시킵니다.
    """
    logger.debug("rollback_with_client()")
    discard = True
    try:
        await query_with_client(client, 'ROLLBACK;', [])
        discard = False
    finally:
        await client.release(discard=discard)


async def begin_transaction(manager: PoolManager) -> Transaction:
    """커넥션 대여 후 START TRANSACTION"""
    logger.debug("begin_transaction()")
    client = await manager.get_client()
    try:
        await query_with_client(client, 'START TRANSACTION;', [])
    except QueryFailedError as e:
        try:
            await rollback_with_client(client)
        except QueryFailedError as rollback_error:
            logger.error(f"Rollback failed after failed begin: {rollback_error}")
            raise BeginError(e, rollback_error) from rollback_error
        raise BeginError(e) from e
    except BaseException:
        await client.release(discard=True)
        raise
    logger.debug("Transaction started")
    return Transaction(client)


async def rollback_transaction(tx: Transaction, error: BaseException | None = None) -> None:
    """
    트랜잭션 롤백 (원인 예외는 다시 발생시키지 않음)

    Raises:
        EndError: 롤백 실패 (원인 예외는 previous_error 로 보존)
    """
    tx._check_open('rollback')
    tx._status = TransactionStatus.ROLLED_BACK
    try:
        await rollback_with_client(tx._client)
    except QueryFailedError as rollback_error:
        logger.error(f"Transaction rollback failed: {rollback_error} (prev error: {error})")
        raise EndError(rollback_error, previous_error=error, rollback='fail') from rollback_error
    logger.debug("Transaction rolled back")


async def commit_transaction(tx: Transaction) -> None:
    """
    트랜잭션 커밋

    Raises:
        EndError: COMMIT 실패 (커넥션은 반환됨)
    """
    tx._check_open('commit')
    try:
        await query_with_client(tx._client, 'COMMIT;', [])
        tx._status = TransactionStatus.COMMITTED
    except QueryFailedError as e:
        raise EndError(e) from e
    finally:
        if tx._status is TransactionStatus.OPEN:
            # PostgreSQL 은 COMMIT 이 실패한 트랜잭션을 중단시킴
            tx._status = TransactionStatus.ROLLED_BACK
        await tx._client.release()
    logger.debug("Transaction committed")


async def end_transaction(tx: Transaction, error: BaseException | None = None) -> None:
    """
    error 가 없으면 커밋, 있으면 롤백 후 error 를 다시 발생시킴

    롤백에 성공하면 원인 예외에 rollback=success 표시를 남겨 다시 발생시키고,
    롤백에 실패하면 EndError 가 우선합니다.
    """
    logger.debug("end_transaction()")
    if error is None:
        await commit_transaction(tx)
        return

    await rollback_transaction(tx, error)
    if isinstance(error, DatabaseError):
        error.add_data(rollback='success')
    else:
        error.add_note("rollback: success")
    raise error


class ManagedTransaction:
    """트랜잭션 컨텍스트 매니저 (정상 종료 시 커밋, 예외 시 롤백)"""

    def __init__(self, manager: PoolManager, name: str):
        self._manager = manager
        self._name = name
        self._tx: Transaction | None = None
        self._token = None

    async def __aenter__(self) -> Transaction:
        self._tx = await begin_transaction(self._manager)
        self._token = set_transaction(self._name, self._tx)
        return self._tx

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            if not self._tx.is_open:
                return
            if exc_type is None:
                await commit_transaction(self._tx)
            else:
                await rollback_transaction(self._tx, exc_val)
        finally:
            reset_transaction(self._token)
