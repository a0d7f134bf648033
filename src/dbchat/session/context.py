"""인증된 사용자 한 명의 세션 컨텍스트.

인증 성공 시 생성되고 로그아웃 시 정리된다. 토큰, 커넥션 목록,
커넥션 세션, 질의 오케스트레이터를 한 곳에서 소유한다.
"""

import asyncio
import logging
from typing import Optional

import httpx

from dbchat.adapters.backend.api_client import BackendClient
from dbchat.adapters.storage.blob_storage import BlobStorage, JsonFileStorage
from dbchat.adapters.storage.transcript_store import TranscriptStore
from dbchat.core.config import Settings
from dbchat.core.exceptions import LogicalFailure, TransportFailure
from dbchat.core.models import Connection, ConnectionDraft
from dbchat.display.chart_classifier import ChartClassifier
from dbchat.session.connection_session import ConnectionSession
from dbchat.session.query_orchestrator import QueryOrchestrator

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Failed to save connection"


class SessionContext:
    """로그인 세션 컨텍스트."""

    def __init__(
        self,
        settings: Settings,
        backend: BackendClient,
        storage: Optional[BlobStorage] = None,
    ) -> None:
        """컨텍스트 초기화. 보통 login/register/from_token으로 생성한다.

        Args:
            settings: 애플리케이션 설정
            backend: 인증된 백엔드 클라이언트
            storage: 대화 기록 블롭 저장소 (None이면 설정의 디렉터리)
        """
        self._settings = settings
        self._backend = backend
        self.transcript_store = TranscriptStore(
            storage if storage is not None else JsonFileStorage(settings.transcript_dir),
            key_prefix=settings.transcript_key_prefix,
        )
        self.session = ConnectionSession(backend, self.transcript_store)
        self.orchestrator = QueryOrchestrator(
            self.session, backend, self.transcript_store, ChartClassifier()
        )
        self._connections: list[Connection] = []
        self._closed = False

    @classmethod
    def from_token(
        cls,
        settings: Settings,
        token: str,
        storage: Optional[BlobStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SessionContext":
        """이미 발급된 토큰으로 컨텍스트 생성."""
        backend = BackendClient(settings, token=token, transport=transport)
        return cls(settings, backend, storage)

    @classmethod
    async def login(
        cls,
        settings: Settings,
        username: str,
        password: str,
        storage: Optional[BlobStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SessionContext":
        """로그인 후 컨텍스트 생성.

        Raises:
            LogicalFailure: 인증 거부
            TransportFailure: 네트워크 에러
        """
        backend = BackendClient(settings, transport=transport)
        try:
            await backend.login(username, password)
        except (LogicalFailure, TransportFailure):
            await backend.close()
            raise
        return cls(settings, backend, storage)

    @classmethod
    async def register(
        cls,
        settings: Settings,
        username: str,
        password: str,
        email: str,
        storage: Optional[BlobStorage] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SessionContext":
        """회원가입 후 컨텍스트 생성."""
        backend = BackendClient(settings, transport=transport)
        try:
            await backend.register(username, password, email)
        except (LogicalFailure, TransportFailure):
            await backend.close()
            raise
        return cls(settings, backend, storage)

    async def __aenter__(self) -> "SessionContext":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.logout()

    @property
    def connections(self) -> list[Connection]:
        return list(self._connections)

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def refresh_connections(self) -> list[Connection]:
        """백엔드에서 커넥션 목록을 다시 불러온다.

        실패하면 기존 목록을 유지한다.
        """
        try:
            self._connections = await self._backend.list_connections()
        except (LogicalFailure, TransportFailure) as e:
            logger.warning("Failed to fetch connections: %s", e)
        return self.connections

    async def add_connection(self, draft: ConnectionDraft) -> Connection:
        """커넥션을 추가하고 목록을 갱신한다.

        Args:
            draft: 커넥션 입력값

        Returns:
            생성된 커넥션

        Raises:
            ValidationError: 필수 필드 누락 (네트워크 호출 없음)
            LogicalFailure: 백엔드 거부
            TransportFailure: 네트워크 에러
        """
        try:
            connection = await self._backend.create_connection(draft)
        except LogicalFailure as e:
            raise LogicalFailure(
                e.detail or SAVE_FAILED_MESSAGE, status_code=e.status_code
            ) from e
        await self.refresh_connections()
        return connection

    async def delete_connection(self, connection_id: str) -> bool:
        """커넥션을 삭제하고 대화 기록도 지운다.

        Returns:
            삭제 성공 여부
        """
        try:
            await self._backend.delete_connection(connection_id)
        except (LogicalFailure, TransportFailure) as e:
            logger.warning("Failed to delete connection %s: %s", connection_id, e)
            return False

        await asyncio.to_thread(self.transcript_store.clear, connection_id)
        self.session.forget(connection_id)
        await self.refresh_connections()
        return True

    async def logout(self) -> None:
        """세션을 정리한다. 저장된 대화 기록은 유지된다."""
        if self._closed:
            return
        self.session.deselect()
        self._connections = []
        await self._backend.close()
        self._closed = True
