"""
동기(blocking) API

비동기 SqlDatabase 를 전용 이벤트 루프 스레드에서 실행하고 결과를 기다립니다.
asyncio 를 쓰지 않는 코드(스크립트, 동기 웹 프레임워크 등)에서 사용합니다.

사용 예시:
    db = BlockingDatabase('default', {'dsn': 'postgresql://app@localhost/app'})
    db.init()
    row = db.query_one_row("SELECT * FROM users WHERE id = $id", {'id': 1})

    tx = db.begin_transaction()
    try:
        tx.query("UPDATE users SET name = $name WHERE id = $id", {'id': 1, 'name': 'kim'})
    except Exception as e:
        db.end_transaction(tx, e)
    else:
        db.end_transaction(tx)

    db.shutdown()
"""

import asyncio
import logging
import threading
from collections.abc import Coroutine
from typing import Any

from sqldb.database import SqlDatabase
from sqldb.pool import IdleErrorHandler, PooledClient
from sqldb.query import QueryResult
from sqldb.transaction import Transaction

logger = logging.getLogger(__name__)


class _LoopRunner:
    """전용 이벤트 루프 스레드"""

    def __init__(self, name: str):
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever,
            name=f"sqldb-{name}",
            daemon=True,
        )
        self._thread.start()

    def run(self, coro: Coroutine) -> Any:
        if not self._thread.is_alive():
            coro.close()
            raise RuntimeError("Event loop thread is not running")
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()

    def stop(self) -> None:
        if self._thread.is_alive():
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join()
        self._loop.close()


class BlockingTransaction:
    """Transaction 의 동기 래퍼"""

    def __init__(self, runner: _LoopRunner, tx: Transaction):
        self._runner = runner
        self._tx = tx

    @property
    def transaction(self) -> Transaction:
        return self._tx

    @property
    def status(self):
        return self._tx.status

    @property
    def client(self) -> PooledClient:
        return self._tx.client

    def query(self, sql: str, params: Any = None) -> QueryResult:
        return self._runner.run(self._tx.query(sql, params))

    def query_one_row(self, sql: str, params: Any = None) -> Any:
        return self._runner.run(self._tx.query_one_row(sql, params))

    def query_zero_or_one_row(self, sql: str, params: Any = None) -> Any | None:
        return self._runner.run(self._tx.query_zero_or_one_row(sql, params))

    def call(self, function_name: str, params: Any = None) -> QueryResult:
        return self._runner.run(self._tx.call(function_name, params))

    def call_one_row(self, function_name: str, params: Any = None) -> Any:
        return self._runner.run(self._tx.call_one_row(function_name, params))

    def call_zero_or_one_row(self, function_name: str, params: Any = None) -> Any | None:
        return self._runner.run(self._tx.call_zero_or_one_row(function_name, params))


class BlockingDatabase:
    """SqlDatabase 의 동기 래퍼"""

    def __init__(
        self,
        name: str,
        pool_options: dict[str, Any],
        idle_error_handler: IdleErrorHandler | None = None,
        **manager_kwargs: Any,
    ):
        self._runner = _LoopRunner(name)
        self._db = SqlDatabase(name, pool_options, idle_error_handler, **manager_kwargs)

    @property
    def database(self) -> SqlDatabase:
        return self._db

    def _run(self, coro: Coroutine) -> Any:
        return self._runner.run(coro)

    def init(self) -> None:
        self._run(self._db.init())

    def close(self) -> None:
        self._run(self._db.close())

    def shutdown(self) -> None:
        """풀 종료 후 이벤트 루프 스레드 정지"""
        try:
            self.close()
        finally:
            self._runner.stop()
        logger.debug(f"BlockingDatabase '{self._db.name}' shut down")

    def get_client(self) -> PooledClient:
        return self._run(self._db.get_client())

    def release(self, client: PooledClient, discard: bool = False) -> bool:
        return self._run(client.release(discard))

    def query(self, sql: str, params: Any = None) -> QueryResult:
        return self._run(self._db.query(sql, params))

    def query_one_row(self, sql: str, params: Any = None) -> Any:
        return self._run(self._db.query_one_row(sql, params))

    def query_zero_or_one_row(self, sql: str, params: Any = None) -> Any | None:
        return self._run(self._db.query_zero_or_one_row(sql, params))

    def query_with_client(self, client: PooledClient, sql: str, params: Any = None) -> QueryResult:
        return self._run(self._db.query_with_client(client, sql, params))

    def query_with_client_one_row(self, client: PooledClient, sql: str, params: Any = None) -> Any:
        return self._run(self._db.query_with_client_one_row(client, sql, params))

    def query_with_client_zero_or_one_row(self, client: PooledClient, sql: str, params: Any = None) -> Any | None:
        return self._run(self._db.query_with_client_zero_or_one_row(client, sql, params))

    def rollback_with_client(self, client: PooledClient) -> None:
        self._run(self._db.rollback_with_client(client))

    def call(self, function_name: str, params: Any = None) -> QueryResult:
        return self._run(self._db.call(function_name, params))

    def call_one_row(self, function_name: str, params: Any = None) -> Any:
        return self._run(self._db.call_one_row(function_name, params))

    def call_zero_or_one_row(self, function_name: str, params: Any = None) -> Any | None:
        return self._run(self._db.call_zero_or_one_row(function_name, params))

    def call_with_client(self, client: PooledClient, function_name: str, params: Any = None) -> QueryResult:
        return self._run(self._db.call_with_client(client, function_name, params))

    def call_with_client_one_row(self, client: PooledClient, function_name: str, params: Any = None) -> Any:
        return self._run(self._db.call_with_client_one_row(client, function_name, params))

    def call_with_client_zero_or_one_row(
        self, client: PooledClient, function_name: str, params: Any = None
    ) -> Any | None:
        return self._run(self._db.call_with_client_zero_or_one_row(client, function_name, params))

    def begin_transaction(self) -> BlockingTransaction:
        tx = self._run(self._db.begin_transaction())
        return BlockingTransaction(self._runner, tx)

    def end_transaction(self, tx: BlockingTransaction, error: BaseException | None = None) -> None:
        self._run(self._db.end_transaction(tx.transaction, error))
