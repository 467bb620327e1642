"""sqldb CLI"""

import argparse
import asyncio
import json
import sys
from typing import Any

from common.logging import setup_logging
from sqldb.config import load_config
from sqldb.exception import DatabaseError
from sqldb.query import QueryResult
from sqldb.registry import DatabaseRegistry, get_db


def parse_param(text: str) -> tuple[str, Any]:
    """name=value 형식 파싱 (value 는 JSON 이면 JSON 으로 해석)"""
    name, sep, value = text.partition('=')
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"Invalid parameter '{text}' (expected name=value)")
    return name, parse_value(value)


def parse_value(value: str) -> Any:
    try:
        return json.loads(value)
    except ValueError:
        return value


def print_result(result: QueryResult) -> None:
    """행을 JSON Lines 로 출력"""
    for row in result.rows:
        print(json.dumps(dict(row), default=str, ensure_ascii=False))
    print(f"{result.command or 'OK'} ({result.row_count} row(s))", file=sys.stderr)


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    setup_logging(
        level=args.log_level or config.logging.level,
        json_format=config.logging.json_format,
        log_file=config.logging.log_file,
    )

    await DatabaseRegistry.init_from_config(config, [args.database])
    try:
        db = get_db(args.database)
        if args.command == "ping":
            row = await db.query_one_row("SELECT 1 AS ok")
            print(f"'{args.database}' is reachable (ok={row['ok']})")
        elif args.command == "query":
            params = dict(args.param) if args.param else None
            print_result(await db.query(args.sql, params))
        elif args.command == "call":
            values = [parse_value(v) for v in args.args]
            print_result(await db.call(args.function, values))
    finally:
        await DatabaseRegistry.close_all()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="sqldb",
        description="sqldb - PostgreSQL named-parameter query tool"
    )
    parser.add_argument("-c", "--config", help="Config file (default: $SQLDB_CONFIG or config/database.yaml)")
    parser.add_argument("-d", "--database", default="default", help="Database name in config (default: default)")
    parser.add_argument("--log-level", help="Override logging level")
    parser.add_argument("-v", "--version", action="version", version="%(prog)s 0.1.0")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("ping", help="Check connectivity")

    query_parser = subparsers.add_parser("query", help="Run a SQL statement")
    query_parser.add_argument("sql", help="SQL with $name placeholders")
    query_parser.add_argument(
        "-p", "--param",
        action="append",
        type=parse_param,
        help="Named parameter as name=value (JSON values allowed, e.g. tags=[1,2])"
    )

    call_parser = subparsers.add_parser("call", help="Call a stored function")
    call_parser.add_argument("function", help="Function name")
    call_parser.add_argument("args", nargs="*", help="Positional arguments (JSON values allowed)")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    try:
        sys.exit(asyncio.run(run(args)))
    except DatabaseError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        if e.data:
            print(json.dumps(e.data, default=str, ensure_ascii=False), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
