"""
PostgreSQL 비동기 커넥션풀 모듈

asyncpg 커넥션풀의 생명주기(init -> open -> close)를 관리합니다.
초기화 시 연결 확인을 고정 백오프로 재시도하고,
유휴 커넥션에서 발생한 오류를 호출측 핸들러로 전달합니다.
"""

import asyncio
import functools
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import asyncpg

from sqldb.exception import (
    CloseError,
    ConnectError,
    IdleConnectionError,
    PoolConfigError,
    PoolError,
    PoolNotOpenError,
)

logger = logging.getLogger(__name__)

# 초기 연결 재시도 간격 (초): 첫 시도 이후 5회 재시도
RETRY_DELAYS: tuple[float, ...] = (0.5, 1.0, 2.0, 5.0, 10.0)

IdleErrorHandler = Callable[[IdleConnectionError, Any], Any]


class PooledClient:
    """
    풀에서 대여한 커넥션

    release() 는 한 번만 유효합니다. async with 로 사용하면 블록 종료 시 반환됩니다.
    """

    def __init__(self, manager: 'PoolManager', pool: Any, connection: Any):
        self._manager = manager
        self._pool = pool
        self._connection = connection
        self._released = False

    @property
    def connection(self) -> Any:
        if self._released:
            raise PoolError("Client has already been released")
        return self._connection

    @property
    def released(self) -> bool:
        return self._released

    async def release(self, discard: bool = False) -> bool:
        """
        커넥션을 풀에 반환

        Args:
            discard: True 면 커넥션을 끊고 반환 (트랜잭션 상태를 알 수 없는 경우)

        Returns:
            실제로 반환했으면 True, 이미 반환된 경우 False
        """
        if self._released:
            logger.warning("Client already released")
            return False
        self._released = True
        manager = self._manager
        pid = _server_pid(self._connection)
        try:
            if discard:
                logger.warning("Discarding connection with unknown transaction state")
                manager._expected_terminations.add(pid)
                self._connection.terminate()
            await self._pool.release(self._connection)
        finally:
            # 반환 중 풀이 닫은 커넥션 (max_queries, reset 실패 등)
            # 종료 리스너는 call_soon 으로 나중에 실행됨
            notified = manager._checked_out.pop(pid, False)
            raw = manager._connections.get(pid)
            if not discard and not notified and raw is not None and _is_closed(raw):
                manager._expected_terminations.add(pid)
        logger.debug(f"Connection released (discard={discard})")
        return True

    async def __aenter__(self) -> 'PooledClient':
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if not self._released:
            await self.release()


class ManagedClient:
    """커넥션 대여/반환 컨텍스트 매니저"""

    def __init__(self, manager: 'PoolManager'):
        self._manager = manager
        self._client: PooledClient | None = None

    async def __aenter__(self) -> PooledClient:
        self._client = await self._manager.get_client()
        return self._client

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client is not None and not self._client.released:
            await self._client.release()


class PoolManager:
    """
    커넥션풀 관리자

    사용 예시:
        manager = PoolManager({'dsn': 'postgresql://app@localhost/app'}, on_idle_error)
        await manager.init()

        async with manager.acquire() as client:
            await client.connection.fetch("SELECT 1")

        await manager.close()
    """

    def __init__(
        self,
        config: dict[str, Any],
        idle_error_handler: IdleErrorHandler | None = None,
        *,
        pool_factory: Callable[..., Any] = asyncpg.create_pool,
        retry_delays: tuple[float, ...] = RETRY_DELAYS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = dict(config)
        self._idle_error_handler = idle_error_handler
        self._pool_factory = pool_factory
        self._retry_delays = tuple(retry_delays)
        self._sleep = sleep

        self._pool: Any | None = None
        self._lock = asyncio.Lock()
        self._closing = False
        # pid -> 대여 중 종료 리스너 호출 여부
        self._checked_out: dict[int | None, bool] = {}
        self._expected_terminations: set[int | None] = set()
        # pid -> 드라이버 커넥션 (프록시가 아닌 원본)
        self._connections: dict[int | None, Any] = {}
        self._handler_tasks: set[asyncio.Task] = set()

    async def init(self) -> None:
        """풀 생성 및 연결 확인 (실패 시 백오프 재시도)"""
        async with self._lock:
            if self._pool is not None:
                logger.warning("Connection pool already initialized")
                return

            options = dict(self._config)
            user_init = options.pop('init', None)
            # 유휴 커넥션 만료를 유휴 오류로 보고하지 않도록 기본 비활성
            options.setdefault('max_inactive_connection_lifetime', 0)

            async def on_connect(connection):
                # 리스너에는 반환 후 분리된 프록시가 전달될 수 있으므로 pid 를 미리 묶어둠
                pid = _server_pid(connection)
                self._connections[pid] = connection
                connection.add_termination_listener(functools.partial(self._on_termination, pid))
                if user_init is not None:
                    await user_init(connection)

            def create_pool():
                try:
                    return self._pool_factory(init=on_connect, **options)
                except Exception as e:
                    raise PoolConfigError(e, options) from e

            self._pool = await self._connect_with_retry(create_pool)
            self._closing = False
            logger.info(
                f"Connection pool initialized "
                f"(min_size={options.get('min_size', '-')}, max_size={options.get('max_size', '-')})"
            )

    async def _connect_with_retry(self, create_pool: Callable[[], Any]) -> Any:
        """
        풀 생성 후 커넥션 1개를 대여/반환하여 연결 확인

        초기화에 실패한 asyncpg 풀은 닫힌 상태로 남으므로 재시도마다 새 풀을 만듭니다.
        """
        retry_count = 0
        while True:
            pool = create_pool()
            try:
                await pool
                connection = await pool.acquire()
                await pool.release(connection)
                return pool
            except Exception as e:
                await _close_quietly(pool)
                if retry_count >= len(self._retry_delays):
                    raise ConnectError(retry_count, e) from e
                delay = self._retry_delays[retry_count]
                retry_count += 1
                logger.warning(
                    f"Connection check failed ({e}), "
                    f"retry {retry_count}/{len(self._retry_delays)} in {delay}s"
                )
                await self._sleep(delay)

    async def get_client(self) -> PooledClient:
        """커넥션 대여 (반환은 호출측 책임)"""
        pool = self._pool
        if pool is None or self._closing:
            raise PoolNotOpenError()

        try:
            connection = await pool.acquire()
        except asyncpg.InterfaceError as e:
            if self._closing or self._pool is None:
                raise PoolNotOpenError(f"Connection pool is closing: {e}") from e
            raise

        self._checked_out[_server_pid(connection)] = False
        return PooledClient(self, pool, connection)

    def acquire(self) -> ManagedClient:
        """커넥션 컨텍스트 매니저 반환"""
        return ManagedClient(self)

    async def close(self) -> None:
        """풀 종료 (열려있지 않으면 아무것도 하지 않음)"""
        async with self._lock:
            pool = self._pool
            if pool is None:
                return
            self._closing = True
            try:
                await pool.close()
            except Exception as e:
                raise CloseError(e) from e
            finally:
                self._pool = None
                self._closing = False
                self._checked_out.clear()
                self._expected_terminations.clear()
                self._connections.clear()
            logger.info("Connection pool closed")

    @property
    def is_open(self) -> bool:
        return self._pool is not None and not self._closing

    @property
    def pool(self) -> Any:
        """드라이버 풀 객체 반환"""
        if self._pool is None:
            raise PoolNotOpenError()
        return self._pool

    @property
    def size(self) -> int:
        """현재 풀의 연결 수"""
        return self._pool.get_size() if self._pool is not None else 0

    @property
    def idle_size(self) -> int:
        """유휴 연결 수"""
        return self._pool.get_idle_size() if self._pool is not None else 0

    def _on_termination(self, pid: int | None, connection: Any) -> None:
        """커넥션 종료 리스너: 유휴 상태에서 끊어진 경우만 보고"""
        # 이전 풀의 커넥션이나 close 중 종료는 무시
        if self._connections.pop(pid, None) is None or self._closing or self._pool is None:
            return
        if pid in self._expected_terminations:
            self._expected_terminations.discard(pid)
            return
        if pid in self._checked_out:
            self._checked_out[pid] = True
            return

        error = IdleConnectionError(pid)
        if self._idle_error_handler is None:
            logger.error(f"Idle client error: {error.message}")
            return
        try:
            outcome = self._idle_error_handler(error, connection)
        except Exception as e:
            logger.error(f"Idle error handler failed: {e}", exc_info=True)
            return
        if inspect.isawaitable(outcome):
            task = asyncio.ensure_future(outcome)
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_tasks.discard)


def _server_pid(connection: Any) -> int | None:
    try:
        return connection.get_server_pid()
    except Exception:
        return None


def _is_closed(connection: Any) -> bool:
    try:
        return connection.is_closed()
    except Exception:
        return False


async def _close_quietly(pool: Any) -> None:
    """초기화 실패한 풀 정리"""
    try:
        await pool.close()
    except Exception as e:
        logger.warning(f"Error closing pool after failed init: {e}")
