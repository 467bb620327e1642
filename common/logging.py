"""
JSON 구조화 로깅 설정

sqldb CLI 와 애플리케이션에서 공용으로 사용합니다.
로그는 stderr 로만 출력하고, stdout 은 CLI 의 결과 행(JSON lines) 전용으로 남겨둡니다.

JSON 포맷에서는 sqldb 예외의 진단 정보(data: sql, 파라미터, rowCount 등)가
'sqldb' 필드로 기록됩니다:

    try:
        await db.query_one_row(sql, params)
    except DatabaseError:
        logger.exception("query failed")    # -> {"message": ..., "sqldb": {"row_count": 0, ...}}

extra={'sqldb': {...}} 로 직접 넘긴 값이 있으면 그 값을 우선합니다.
"""

import logging
import sys

from pythonjsonlogger.json import JsonFormatter

from sqldb.exception import DatabaseError

# 쿼리 로그가 많은 드라이버/이벤트 루프 로거
QUIET_LOGGERS = ('asyncio', 'asyncpg')


class CustomJsonFormatter(JsonFormatter):
    """sqldb 예외 진단 정보를 포함하는 JSON 로그 포매터"""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record['timestamp'] = self.formatTime(record)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name

        error = record.exc_info[1] if record.exc_info else None
        if isinstance(error, DatabaseError) and 'sqldb' not in log_record:
            log_record['sqldb'] = {'error': type(error).__name__, **error.data}


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None
) -> None:
    """
    로깅 설정 (sqldb CLI 시작 시 config/database.yaml 의 logging 섹션으로 호출)

    Args:
        level: 로그 레벨 (DEBUG 면 실행 SQL 과 파라미터까지 기록)
        json_format: JSON 포맷 사용 여부 (False면 기본 텍스트 포맷)
        log_file: 추가로 기록할 로그 파일 경로
    """
    if json_format:
        formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')
    else:
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=handlers,
        force=True
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
