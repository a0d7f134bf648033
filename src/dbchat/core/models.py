"""Core 데이터 모델 정의."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from dbchat.core.exceptions import ValidationError

# 결과 셋: 컬럼명 -> 스칼라 값 매핑의 순서 있는 리스트
Scalar = Union[str, int, float, None]
ResultSet = list[dict[str, Scalar]]


class EngineKind(Enum):
    """지원하는 데이터베이스 엔진 종류."""

    MYSQL = "mysql"
    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"
    MSSQL = "mssql"

    @property
    def dialect(self) -> str:
        """sqlglot 방언 이름."""
        return _DIALECTS[self]


_DIALECTS = {
    EngineKind.MYSQL: "mysql",
    EngineKind.POSTGRESQL: "postgres",
    EngineKind.SQLITE: "sqlite",
    EngineKind.MSSQL: "tsql",
}


def _parse_port(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    return int(text) if text.isdigit() else None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class Connection:
    """저장된 데이터베이스 접속 정보.

    수정은 새 객체로 교체하는 방식이며 제자리 변경하지 않는다.
    """

    id: str
    name: str
    engine: EngineKind
    database: str
    host: Optional[str] = None
    port: Optional[int] = None
    username: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Connection":
        """백엔드 응답 딕셔너리에서 Connection 생성.

        Args:
            data: 백엔드 커넥션 JSON 객체

        Returns:
            Connection 객체

        Raises:
            ValueError: id가 없거나 엔진 종류를 알 수 없는 경우
        """
        if data.get("id") is None:
            raise ValueError("connection payload has no id")

        return cls(
            id=str(data["id"]),
            name=data.get("db_connection_name") or data.get("name") or "",
            engine=EngineKind(data.get("db_type") or data.get("type")),
            database=data.get("db_name") or data.get("database") or "",
            host=data.get("host") or data.get("db_host"),
            port=_parse_port(data.get("port", data.get("db_port"))),
            username=data.get("username") or data.get("db_user"),
            created_at=_parse_timestamp(data.get("created_at")),
        )


@dataclass
class ConnectionDraft:
    """커넥션 추가 폼 입력값."""

    name: str = ""
    engine: EngineKind = EngineKind.MYSQL
    host: str = ""
    port: str = ""
    username: str = ""
    password: str = ""
    database: str = ""

    def validate(self) -> None:
        """필수 필드를 검증한다.

        Raises:
            ValidationError: 이름/데이터베이스 누락 또는 잘못된 포트
        """
        if not self.name.strip() or not self.database.strip():
            raise ValidationError(
                "Please fill in all required fields (Name, Database)"
            )

        port = str(self.port).strip()
        if port and (not port.isdigit() or not 1 <= int(port) <= 65535):
            raise ValidationError(f"Invalid port: {self.port}")

    def to_payload(self) -> dict[str, str]:
        """백엔드 요청 본문으로 변환."""
        return {
            "name": self.name.strip(),
            "type": self.engine.value,
            "host": self.host.strip(),
            "port": str(self.port).strip(),
            "username": self.username,
            "password": self.password,
            "database": self.database.strip(),
        }


class SessionState(Enum):
    """활성 커넥션의 상태."""

    IDLE = "idle"
    TESTING = "testing"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass(frozen=True)
class ConnectionStatus:
    """활성 커넥션 상태 값. 영속화되지 않는다."""

    state: SessionState
    message: Optional[str] = None

    @classmethod
    def idle(cls) -> "ConnectionStatus":
        return cls(SessionState.IDLE)

    @classmethod
    def testing(cls) -> "ConnectionStatus":
        return cls(SessionState.TESTING)

    @classmethod
    def connected(cls) -> "ConnectionStatus":
        return cls(SessionState.CONNECTED)

    @classmethod
    def failed(cls, message: str) -> "ConnectionStatus":
        return cls(SessionState.FAILED, message)


class ChartKind(Enum):
    """결과 셋 시각화 분류."""

    NONE = "none"
    PIE = "pie"
    BAR = "bar"
    LINE = "line"


@dataclass(frozen=True)
class ChartSpec:
    """차트 분류 결과."""

    kind: ChartKind
    label_column: Optional[str] = None
    value_columns: tuple[str, ...] = ()

    @classmethod
    def none(cls) -> "ChartSpec":
        return cls(ChartKind.NONE)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "label_column": self.label_column,
            "value_columns": list(self.value_columns),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChartSpec":
        return cls(
            kind=ChartKind(data["kind"]),
            label_column=data.get("label_column"),
            value_columns=tuple(data.get("value_columns") or ()),
        )


class Role(Enum):
    """대화 턴 작성자."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatTurn:
    """대화 기록의 한 턴. 추가된 뒤에는 수정/삭제되지 않는다."""

    role: Role
    content: str
    results: Optional[ResultSet] = None
    chart: Optional[ChartSpec] = None
    error: bool = False

    @classmethod
    def user(cls, question: str) -> "ChatTurn":
        return cls(Role.USER, question)

    @property
    def is_text_only(self) -> bool:
        """결과 셋 없이 텍스트만 있는 턴인지 여부."""
        return self.results is None

    @property
    def has_empty_result(self) -> bool:
        """결과 셋은 있지만 행이 0개인지 여부."""
        return self.results is not None and len(self.results) == 0

    def to_dict(self) -> dict[str, Any]:
        """저장용 딕셔너리로 변환."""
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.results is not None:
            data["results"] = self.results
        if self.chart is not None:
            data["chart"] = self.chart.to_dict()
        if self.error:
            data["error"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatTurn":
        """저장된 딕셔너리에서 ChatTurn 복원.

        Raises:
            KeyError, ValueError, TypeError: 형식이 올바르지 않은 경우
        """
        results = data.get("results")
        if results is not None and not isinstance(results, list):
            raise TypeError("results must be a list of rows")
        chart = data.get("chart")
        return cls(
            role=Role(data["role"]),
            content=str(data["content"]),
            results=results,
            chart=ChartSpec.from_dict(chart) if chart else None,
            error=bool(data.get("error", False)),
        )


class ExchangeState(Enum):
    """질문-응답 교환의 단계."""

    PENDING = "pending"
    FINALIZED = "finalized"
    ERRORED = "errored"
    DISCARDED = "discarded"


@dataclass
class Exchange:
    """낙관적으로 추가된 사용자 턴과 그에 대한 응답을 묶는 2단계 기록."""

    connection_id: str
    question: ChatTurn
    generation: int
    state: ExchangeState = ExchangeState.PENDING
    answer: Optional[ChatTurn] = None
    started_at: datetime = field(default_factory=datetime.now)

    @property
    def is_pending(self) -> bool:
        return self.state is ExchangeState.PENDING

    def finalize(self, answer: ChatTurn) -> None:
        self._settle(ExchangeState.ERRORED if answer.error else ExchangeState.FINALIZED)
        self.answer = answer

    def discard(self) -> None:
        self._settle(ExchangeState.DISCARDED)

    def _settle(self, state: ExchangeState) -> None:
        if not self.is_pending:
            raise RuntimeError(f"exchange already {self.state.value}")
        self.state = state
