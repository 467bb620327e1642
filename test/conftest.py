"""
테스트 공용 fixture

asyncpg 풀/커넥션과 같은 인터페이스를 가진 가짜 드라이버를 제공합니다.
실제 PostgreSQL 없이 풀 생명주기, 재시도, 트랜잭션 분기를 검증할 수 있습니다.
"""

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace

import asyncpg
import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqldb.database import SqlDatabase


class FakeStatement:
    """asyncpg PreparedStatement 대역"""

    def __init__(self, connection: 'FakeConnection', sql: str):
        self._connection = connection
        self._sql = sql
        self._rows: list = []
        self._status = ''

    async def fetch(self, *args):
        driver = self._connection.driver
        self._connection.executed.append((self._sql, args))
        driver.statements.append((self._sql, args))

        error = driver.errors.get(self._sql)
        if isinstance(error, list):
            error = error.pop(0) if error else None
        if error is not None:
            raise error

        rows, status = driver.results.get(self._sql, ([], None))
        self._rows = list(rows)
        self._status = status or _default_status(self._sql, self._rows)
        return self._rows

    def get_statusmsg(self) -> str:
        return self._status

    def get_attributes(self):
        if not self._rows:
            return ()
        return tuple(SimpleNamespace(name=key) for key in self._rows[0])


def _default_status(sql: str, rows: list) -> str:
    command = sql.split()[0].rstrip(';').upper()
    if command == 'SELECT':
        return f'SELECT {len(rows)}'
    return command


class FakeConnection:
    """asyncpg Connection 대역"""

    def __init__(self, driver: 'FakeDriver', pid: int):
        self.driver = driver
        self.pid = pid
        self.executed: list[tuple[str, tuple]] = []
        self.listeners: list = []
        self.terminated = False

    async def prepare(self, sql: str) -> FakeStatement:
        if self.terminated:
            raise asyncpg.InterfaceError('connection is closed')
        return FakeStatement(self, sql)

    async def execute(self, sql: str) -> str:
        statement = await self.prepare(sql)
        await statement.fetch()
        return statement.get_statusmsg()

    def get_server_pid(self) -> int:
        return self.pid

    def add_termination_listener(self, callback) -> None:
        self.listeners.append(callback)

    def terminate(self) -> None:
        # asyncpg 처럼 종료 리스너는 call_soon 으로 나중에 실행
        self.terminated = True
        loop = asyncio.get_running_loop()
        for callback in self.listeners:
            loop.call_soon(callback, self)
        self.listeners = []

    def is_closed(self) -> bool:
        return self.terminated


class FakePool:
    """asyncpg Pool 대역"""

    def __init__(self, driver: 'FakeDriver', init=None, **options):
        self.driver = driver
        self.options = options
        self._init = init
        self._idle: list[FakeConnection] = []
        self._all: list[FakeConnection] = []
        self.closed = False

    def __await__(self):
        return self._initialize().__await__()

    async def _initialize(self) -> 'FakePool':
        # asyncpg 0.30+: 초기화 실패한 풀은 닫힌 상태로 남음
        if self.driver.init_errors:
            self.closed = True
            raise self.driver.init_errors.pop(0)
        return self

    async def acquire(self) -> FakeConnection:
        if self.closed:
            raise asyncpg.InterfaceError('pool is closing')
        self.driver.acquire_attempts += 1
        if self.driver.connect_errors:
            raise self.driver.connect_errors.pop(0)

        if self._idle:
            connection = self._idle.pop()
        else:
            self.driver.next_pid += 1
            connection = FakeConnection(self.driver, self.driver.next_pid)
            self._all.append(connection)
            if self._init is not None:
                await self._init(connection)
        self.driver.acquired += 1
        return connection

    async def release(self, connection: FakeConnection) -> None:
        self.driver.released += 1
        self.driver.released_connections.append(connection)
        if self.driver.close_on_release and not connection.terminated:
            # max_queries 도달 등으로 풀이 커넥션을 닫는 경우
            connection.terminate()
        if not connection.terminated:
            self._idle.append(connection)

    async def close(self) -> None:
        if self.driver.close_error is not None:
            raise self.driver.close_error
        self.closed = True

    def get_size(self) -> int:
        return len([c for c in self._all if not c.terminated])

    def get_idle_size(self) -> int:
        return len(self._idle)


class FakeDriver:
    """가짜 드라이버 상태 (실행된 SQL, 대여/반환 횟수, 주입할 오류)"""

    def __init__(self):
        self.pools: list[FakePool] = []
        self.statements: list[tuple[str, tuple]] = []
        self.results: dict[str, tuple[list, str | None]] = {}
        self.errors: dict[str, BaseException | list] = {}
        self.connect_errors: list[BaseException] = []
        self.init_errors: list[BaseException] = []
        self.close_on_release = False
        self.config_error: BaseException | None = None
        self.close_error: BaseException | None = None
        self.sleeps: list[float] = []
        self.acquire_attempts = 0
        self.acquired = 0
        self.released = 0
        self.released_connections: list[FakeConnection] = []
        self.next_pid = 1000

    def create_pool(self, **options) -> FakePool:
        if self.config_error is not None:
            raise self.config_error
        pool = FakePool(self, **options)
        self.pools.append(pool)
        return pool

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)

    def sql(self) -> list[str]:
        """실행된 SQL 목록"""
        return [sql for sql, _ in self.statements]

    def manager_kwargs(self) -> dict:
        return {'pool_factory': self.create_pool, 'sleep': self.sleep}


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest_asyncio.fixture
async def database(driver):
    """가짜 드라이버 위의 SqlDatabase"""
    db = SqlDatabase('default', {'min_size': 1, 'max_size': 5}, **driver.manager_kwargs())
    await db.init()
    # 초기 연결 확인에서 발생한 대여/반환은 제외
    driver.acquired = driver.released = 0
    driver.released_connections.clear()
    yield db
    await db.close()
