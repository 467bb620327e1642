"""
데이터베이스 레지스트리

애플리케이션 수명 동안 공유할 SqlDatabase 인스턴스를 이름으로 보관합니다.

사용 예시:
    await DatabaseRegistry.init_from_config(load_config())
    db = get_db('default')
    ...
    await DatabaseRegistry.close_all()
"""

import logging
from typing import Any

from sqldb.config import SqldbConfig
from sqldb.database import SqlDatabase
from sqldb.exception import DatabaseError
from sqldb.pool import IdleErrorHandler

logger = logging.getLogger(__name__)


class DatabaseRegistry:
    """이름 -> SqlDatabase 레지스트리"""

    _databases: dict[str, SqlDatabase] = {}

    @classmethod
    async def init_from_config(
        cls,
        config: SqldbConfig | dict[str, Any],
        names: list[str] | None = None,
        idle_error_handler: IdleErrorHandler | None = None,
        **manager_kwargs: Any,
    ) -> None:
        """설정의 databases 항목별로 SqlDatabase 생성 및 초기화"""
        if not isinstance(config, SqldbConfig):
            config = SqldbConfig.model_validate(config)

        targets = names if names is not None else list(config.databases)
        for name in targets:
            if name in cls._databases:
                logger.warning(f"Database '{name}' already registered")
                continue
            if name not in config.databases:
                raise DatabaseError(f"Database '{name}' is not configured")
            db = SqlDatabase(
                name,
                config.databases[name].to_pool_options(),
                idle_error_handler,
                **manager_kwargs,
            )
            await db.init()
            cls._databases[name] = db

        logger.info(f"DatabaseRegistry initialized: {list(cls._databases)}")

    @classmethod
    def register(cls, db: SqlDatabase) -> None:
        cls._databases[db.name] = db

    @classmethod
    def get(cls, name: str = 'default') -> SqlDatabase:
        if name not in cls._databases:
            raise DatabaseError(f"Database '{name}' not registered")
        return cls._databases[name]

    @classmethod
    def names(cls) -> list[str]:
        return list(cls._databases)

    @classmethod
    async def close_all(cls) -> None:
        """등록된 모든 데이터베이스 종료"""
        errors = []
        for name, db in list(cls._databases.items()):
            try:
                await db.close()
            except DatabaseError as e:
                logger.error(f"Failed to close database '{name}': {e}")
                errors.append(e)
        cls._databases.clear()
        if errors:
            raise errors[0]

    @classmethod
    def clear(cls) -> None:
        """레지스트리 비우기 (종료하지 않음, 테스트용)"""
        cls._databases.clear()


def get_db(name: str = 'default') -> SqlDatabase:
    """등록된 SqlDatabase 반환"""
    return DatabaseRegistry.get(name)
