"""
PostgreSQL 통합 테스트

Docker 환경에서 실행:
    docker run -d -p 5432:5432 -e POSTGRES_USER=sqldb -e POSTGRES_PASSWORD=sqldb_dev -e POSTGRES_DB=sqldb postgres:16
    python -m pytest test/database/test_postgres.py -v

테스트 항목:
1. 연결 확인
2. 이름 파라미터 / 배열 파라미터
3. 트랜잭션 커밋 / 롤백
4. 드라이버 오류 정규화
5. 저장 프로시저 호출
"""

import logging
import socket
import sys
from pathlib import Path

import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from sqldb.database import SqlDatabase
from sqldb.exception import CardinalityError, QueryFailedError

logging.basicConfig(
    level=logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

POSTGRES_OPTIONS = {
    'host': 'localhost',
    'port': 5432,
    'user': 'sqldb',
    'password': 'sqldb_dev',
    'database': 'sqldb',
    'min_size': 1,
    'max_size': 3,
}


# Docker postgres 실행 여부 확인
def is_postgres_available():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    result = sock.connect_ex(('localhost', 5432))
    sock.close()
    return result == 0


pytestmark = pytest.mark.skipif(
    not is_postgres_available(),
    reason="PostgreSQL not available on localhost:5432"
)


@pytest_asyncio.fixture
async def database():
    """테스트용 SqlDatabase 인스턴스"""
    db = await SqlDatabase.create('postgres_test', POSTGRES_OPTIONS)
    await db.query("""
        CREATE TABLE IF NOT EXISTS sqldb_test_items (
            id SERIAL PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            tags INT[]
        )
    """)
    await db.query("DELETE FROM sqldb_test_items")
    await db.query("""
        CREATE OR REPLACE FUNCTION sqldb_test_add(a INT, b INT)
        RETURNS TABLE (total INT) AS $fn$ SELECT a + b $fn$ LANGUAGE SQL
    """, [])
    yield db
    await db.close()


class TestPostgresQuery:
    """쿼리 테스트"""

    @pytest.mark.asyncio
    async def test_ping(self, database):
        row = await database.query_one_row("SELECT 1 AS ok")
        assert row['ok'] == 1

    @pytest.mark.asyncio
    async def test_named_and_array_params(self, database):
        await database.query(
            "INSERT INTO sqldb_test_items (name, tags) VALUES ($name, $tags)",
            {'name': 'test_a', 'tags': [1, 2, 3]},
        )
        row = await database.query_one_row(
            "SELECT name FROM sqldb_test_items WHERE 2 = ANY($wanted) AND tags @> $wanted AND name = $name",
            {'wanted': [2], 'name': 'test_a'},
        )
        assert row['name'] == 'test_a'

    @pytest.mark.asyncio
    async def test_row_count_for_update(self, database):
        await database.query("INSERT INTO sqldb_test_items (name) VALUES ($n)", {'n': 'test_b'})
        result = await database.query("UPDATE sqldb_test_items SET tags = NULL WHERE name = $n", {'n': 'test_b'})
        assert result.row_count == 1

    @pytest.mark.asyncio
    async def test_cardinality(self, database):
        with pytest.raises(CardinalityError) as exc_info:
            await database.query_one_row("SELECT * FROM sqldb_test_items WHERE name = $n", {'n': 'none'})
        assert exc_info.value.row_count == 0

    @pytest.mark.asyncio
    async def test_driver_error(self, database):
        with pytest.raises(QueryFailedError) as exc_info:
            await database.query("SELECT * FROM sqldb_no_such_table")
        assert exc_info.value.sql_error['sqlstate'] == '42P01'

    @pytest.mark.asyncio
    async def test_call(self, database):
        row = await database.call_one_row('sqldb_test_add', [2, 3])
        assert row['total'] == 5


class TestPostgresTransaction:
    """트랜잭션 테스트"""

    @pytest.mark.asyncio
    async def test_commit(self, database):
        async with database.transaction() as tx:
            await tx.query("INSERT INTO sqldb_test_items (name) VALUES ($n)", {'n': 'test_commit'})

        row = await database.query_zero_or_one_row(
            "SELECT * FROM sqldb_test_items WHERE name = $n", {'n': 'test_commit'}
        )
        assert row is not None

    @pytest.mark.asyncio
    async def test_rollback(self, database):
        with pytest.raises(ValueError):
            async with database.transaction() as tx:
                await tx.query("INSERT INTO sqldb_test_items (name) VALUES ($n)", {'n': 'test_rollback'})
                raise ValueError("Intentional error for rollback test")

        row = await database.query_zero_or_one_row(
            "SELECT * FROM sqldb_test_items WHERE name = $n", {'n': 'test_rollback'}
        )
        assert row is None
