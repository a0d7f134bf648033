"""백엔드 HTTP API 비동기 클라이언트."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from dbchat.core.config import Settings
from dbchat.core.exceptions import LogicalFailure, TransportFailure
from dbchat.core.models import Connection, ConnectionDraft, ResultSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectivityResult:
    """커넥션 테스트 결과."""

    success: bool
    message: Optional[str] = None


@dataclass(frozen=True)
class QueryAnswer:
    """자연어 질문 실행 결과."""

    query: Optional[str] = None
    results: Optional[ResultSet] = None


class BackendClient:
    """백엔드 API 클라이언트.

    인증, 커넥션 CRUD, 커넥션 테스트, 질문 실행을 담당한다.
    백엔드가 실패를 보고하면 LogicalFailure, 네트워크/파싱 실패는
    TransportFailure를 발생시킨다.
    """

    def __init__(
        self,
        settings: Settings,
        token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """클라이언트 초기화.

        Args:
            settings: 애플리케이션 설정
            token: 인증 토큰 (로그인 전에는 None)
            transport: httpx 트랜스포트 (테스트용)
        """
        self._settings = settings
        self._token = token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def token(self) -> Optional[str]:
        return self._token

    async def initialize(self) -> None:
        """HTTP 클라이언트 생성."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._settings.api_base_url.rstrip("/"),
                timeout=self._settings.api_timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        """HTTP 클라이언트를 닫는다."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "BackendClient":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            await self.initialize()
        return self._client  # type: ignore

    def _get_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(
        self, method: str, path: str, payload: Optional[dict[str, Any]] = None
    ) -> Any:
        """요청을 보내고 JSON 본문을 반환.

        Raises:
            LogicalFailure: 2xx가 아닌 응답 (본문의 detail 포함)
            TransportFailure: 네트워크 에러 또는 JSON 파싱 실패
        """
        client = await self._ensure_client()
        try:
            response = await client.request(
                method, path, json=payload, headers=self._get_headers()
            )
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransportFailure(f"{method} {path} failed: {e}") from e

        if response.is_success and not response.content:
            return None

        try:
            body = response.json()
        except ValueError as e:
            logger.warning(
                "%s %s returned undecodable body (HTTP %s)",
                method,
                path,
                response.status_code,
            )
            raise TransportFailure(
                f"{method} {path} returned invalid JSON (HTTP {response.status_code})"
            ) from e

        if response.is_success:
            return body

        detail = body.get("detail") if isinstance(body, dict) else None
        if not isinstance(detail, str):
            detail = None
        logger.info("%s %s rejected (HTTP %s): %s", method, path, response.status_code, detail)
        raise LogicalFailure(detail, status_code=response.status_code)

    async def _authenticate(self, path: str, payload: dict[str, Any]) -> str:
        data = await self._request("POST", path, payload)
        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise TransportFailure(f"POST {path} response has no token")
        self._token = token
        return token

    async def login(self, username: str, password: str) -> str:
        """로그인하고 토큰을 반환.

        Args:
            username: 사용자명
            password: 비밀번호

        Returns:
            인증 토큰
        """
        return await self._authenticate(
            "/auth/login", {"username": username, "password": password}
        )

    async def register(self, username: str, password: str, email: str) -> str:
        """회원가입하고 토큰을 반환."""
        return await self._authenticate(
            "/auth/register",
            {"username": username, "password": password, "email": email},
        )

    async def list_connections(self) -> list[Connection]:
        """저장된 커넥션 목록을 표시 순서대로 반환.

        형식이 잘못된 항목은 건너뛴다.
        """
        data = await self._request("GET", "/connections")
        if not isinstance(data, list):
            return []

        connections = []
        for item in data:
            try:
                connections.append(Connection.from_api(item))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning("Skipping malformed connection entry: %s", e)
        return connections

    async def create_connection(self, draft: ConnectionDraft) -> Connection:
        """커넥션을 생성.

        Args:
            draft: 커넥션 입력값

        Returns:
            생성된 커넥션

        Raises:
            ValidationError: 필수 필드 누락 (네트워크 호출 전)
        """
        draft.validate()
        data = await self._request("POST", "/connections", draft.to_payload())
        try:
            return Connection.from_api(data)
        except (ValueError, TypeError, AttributeError) as e:
            raise TransportFailure(f"Unexpected create-connection response: {e}") from e

    async def delete_connection(self, connection_id: str) -> None:
        """커넥션을 삭제."""
        await self._request("DELETE", f"/connections/{connection_id}")

    async def test_connectivity(self, connection_id: str) -> ConnectivityResult:
        """커넥션 접속 가능 여부를 확인.

        Args:
            connection_id: 커넥션 id

        Returns:
            접속 테스트 결과
        """
        data = await self._request(
            "POST", "/connections/connect", {"connection_id": connection_id}
        )
        if not isinstance(data, dict):
            raise TransportFailure("Unexpected connectivity response")
        return ConnectivityResult(
            success=bool(data.get("success")),
            message=data.get("message"),
        )

    async def execute_question(self, connection_id: str, question: str) -> QueryAnswer:
        """자연어 질문을 실행.

        Args:
            connection_id: 커넥션 id
            question: 자연어 질문

        Returns:
            생성된 SQL과 결과 셋
        """
        data = await self._request(
            "POST",
            "/chat",
            {"question": question, "connection_id": connection_id},
        )
        if not isinstance(data, dict):
            raise TransportFailure("Unexpected chat response")

        results = data.get("results")
        if isinstance(results, list) and not all(isinstance(row, dict) for row in results):
            raise TransportFailure("Unexpected result rows in chat response")
        return QueryAnswer(
            query=data.get("query") or None,
            results=results if isinstance(results, list) else None,
        )
