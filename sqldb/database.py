"""
PostgreSQL 데이터베이스 구현

커넥션풀, 쿼리 실행, 트랜잭션, 행 수 검증을 하나의 객체로 묶습니다.
프로세스 전역 상태는 없으며, 애플리케이션은 DatabaseRegistry 에 인스턴스를 등록해 공유합니다.
"""

import logging
from typing import Any

from sqldb.cardinality import exactly_one, zero_or_one
from sqldb.exception import IdleConnectionError
from sqldb.pool import IdleErrorHandler, ManagedClient, PoolManager, PooledClient
from sqldb.query import QueryResult, call_params, call_with_client, query_with_client
from sqldb.transaction import (
    ManagedTransaction,
    Transaction,
    begin_transaction,
    end_transaction,
    rollback_with_client,
)

logger = logging.getLogger(__name__)


class SqlDatabase:
    """
    PostgreSQL 데이터베이스

    사용 예시:
        db = await SqlDatabase.create('default', {'dsn': 'postgresql://app@localhost/app'})

        user = await db.query_one_row("SELECT * FROM users WHERE id = $id", {'id': 1})

        async with db.transaction() as tx:
            await tx.query("UPDATE users SET name = $name WHERE id = $id", {'id': 1, 'name': 'kim'})

        await db.close()
    """

    def __init__(
        self,
        name: str,
        pool_options: dict[str, Any],
        idle_error_handler: IdleErrorHandler | None = None,
        **manager_kwargs: Any,
    ):
        self._name = name
        self._manager = PoolManager(
            pool_options,
            idle_error_handler or self._log_idle_error,
            **manager_kwargs,
        )

    @classmethod
    async def create(
        cls,
        name: str,
        pool_options: dict[str, Any],
        idle_error_handler: IdleErrorHandler | None = None,
        **manager_kwargs: Any,
    ) -> 'SqlDatabase':
        """SqlDatabase 인스턴스 생성 및 초기화"""
        instance = cls(name, pool_options, idle_error_handler, **manager_kwargs)
        await instance.init()
        return instance

    @property
    def name(self) -> str:
        return self._name

    @property
    def pool(self) -> PoolManager:
        """커넥션풀 관리자 반환"""
        return self._manager

    def _log_idle_error(self, error: IdleConnectionError, connection: Any) -> None:
        logger.error(f"SqlDatabase '{self._name}': {error.message}")

    async def init(self) -> None:
        await self._manager.init()
        logger.info(f"SqlDatabase '{self._name}' initialized")

    async def close(self) -> None:
        """데이터베이스 연결 종료"""
        await self._manager.close()
        logger.info(f"SqlDatabase '{self._name}' closed")

    async def get_client(self) -> PooledClient:
        return await self._manager.get_client()

    def acquire(self) -> ManagedClient:
        return self._manager.acquire()

    # 공유 풀 쿼리

    async def query(self, sql: str, params: Any = None) -> QueryResult:
        """풀에서 커넥션을 대여해 실행하고 반환"""
        async with self._manager.acquire() as client:
            return await query_with_client(client, sql, params)

    async def query_one_row(self, sql: str, params: Any = None) -> Any:
        result = await self.query(sql, params)
        return exactly_one(result, sql=sql, params=params)

    async def query_zero_or_one_row(self, sql: str, params: Any = None) -> Any | None:
        result = await self.query(sql, params)
        return zero_or_one(result, sql=sql, params=params)

    # 호출측 커넥션 쿼리

    async def query_with_client(self, client: PooledClient, sql: str, params: Any = None) -> QueryResult:
        return await query_with_client(client, sql, params)

    async def query_with_client_one_row(self, client: PooledClient, sql: str, params: Any = None) -> Any:
        result = await query_with_client(client, sql, params)
        return exactly_one(result, sql=sql, params=params)

    async def query_with_client_zero_or_one_row(
        self, client: PooledClient, sql: str, params: Any = None
    ) -> Any | None:
        result = await query_with_client(client, sql, params)
        return zero_or_one(result, sql=sql, params=params)

    async def rollback_with_client(self, client: PooledClient) -> None:
        await rollback_with_client(client)

    # 저장 프로시저

    async def call(self, function_name: str, params: Any = None) -> QueryResult:
        call_params(function_name, params)
        async with self._manager.acquire() as client:
            return await call_with_client(client, function_name, params)

    async def call_one_row(self, function_name: str, params: Any = None) -> Any:
        result = await self.call(function_name, params)
        return exactly_one(result, params=params, function_name=function_name)

    async def call_zero_or_one_row(self, function_name: str, params: Any = None) -> Any | None:
        result = await self.call(function_name, params)
        return zero_or_one(result, params=params, function_name=function_name)

    async def call_with_client(self, client: PooledClient, function_name: str, params: Any = None) -> QueryResult:
        return await call_with_client(client, function_name, params)

    async def call_with_client_one_row(self, client: PooledClient, function_name: str, params: Any = None) -> Any:
        result = await call_with_client(client, function_name, params)
        return exactly_one(result, params=params, function_name=function_name)

    async def call_with_client_zero_or_one_row(
        self, client: PooledClient, function_name: str, params: Any = None
    ) -> Any | None:
        result = await call_with_client(client, function_name, params)
        return zero_or_one(result, params=params, function_name=function_name)

    # 트랜잭션

    async def begin_transaction(self) -> Transaction:
        return await begin_transaction(self._manager)

    async def end_transaction(self, tx: Transaction, error: BaseException | None = None) -> None:
        await end_transaction(tx, error)

    def transaction(self) -> ManagedTransaction:
        """트랜잭션 컨텍스트 매니저 반환"""
        return ManagedTransaction(self._manager, self._name)
