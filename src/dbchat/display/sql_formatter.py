"""생성된 SQL을 화면 표시용으로 정리하는 포맷터."""

import logging
from typing import Optional

import sqlglot
from sqlglot.errors import SqlglotError

from dbchat.core.models import EngineKind

logger = logging.getLogger(__name__)


class SQLFormatter:
    """sqlglot 기반 SQL 표시 포맷터."""

    def format(self, sql: str, engine: Optional[EngineKind] = None) -> str:
        """SQL을 들여쓰기된 형태로 변환한다.

        파싱할 수 없는 SQL은 원문 그대로 반환한다.

        Args:
            sql: 원본 SQL 문자열
            engine: 커넥션 엔진 종류 (None이면 방언 미지정)

        Returns:
            포맷된 SQL 문자열
        """
        if not sql or not sql.strip():
            return sql

        dialect = engine.dialect if engine else None
        try:
            statements = sqlglot.transpile(
                sql, read=dialect, write=dialect, pretty=True
            )
        except SqlglotError as e:
            logger.debug("SQL formatting skipped: %s", e)
            return sql

        if not statements:
            return sql
        return ";\n\n".join(statements)
