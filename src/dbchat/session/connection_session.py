"""활성 커넥션의 선택, 접속 테스트, 상태를 관리하는 세션."""

import asyncio
import logging
from typing import Optional

from dbchat.adapters.backend.api_client import BackendClient
from dbchat.adapters.storage.transcript_store import TranscriptStore
from dbchat.core.exceptions import LogicalFailure, TransportFailure
from dbchat.core.models import ChatTurn, Connection, ConnectionStatus, SessionState

logger = logging.getLogger(__name__)

CONNECTION_FAILED_MESSAGE = "Connection failed"
TEST_FAILED_MESSAGE = "Failed to test connection"
NETWORK_ERROR_MESSAGE = "Network error. Please check your backend server."


class ConnectionSession:
    """한 번에 하나의 활성 커넥션을 관리한다.

    상태 전이: IDLE -> TESTING -> CONNECTED | FAILED.
    선택/해제마다 selection generation이 증가하고, 접속 테스트마다 별도의
    check 카운터가 증가한다. 응답 도착 시점의 값이 요청 시점과 다르면
    그 결과는 버린다. 재테스트는 대상이 바뀌지 않으므로 selection
    generation을 바꾸지 않는다.
    """

    def __init__(self, backend: BackendClient, transcript_store: TranscriptStore) -> None:
        """세션 초기화.

        Args:
            backend: 백엔드 클라이언트
            transcript_store: 대화 기록 저장소
        """
        self._backend = backend
        self._transcript_store = transcript_store
        self._active: Optional[Connection] = None
        self._status = ConnectionStatus.idle()
        self._generation = 0
        self._check_generation = 0
        self._transcript: list[ChatTurn] = []
        self._transcript_loaded = False

    @property
    def active(self) -> Optional[Connection]:
        return self._active

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def state(self) -> SessionState:
        return self._status.state

    @property
    def generation(self) -> int:
        """가장 최근 선택/해제의 generation."""
        return self._generation

    @property
    def is_connected(self) -> bool:
        return self._active is not None and self._status.state is SessionState.CONNECTED

    @property
    def transcript(self) -> list[ChatTurn]:
        """현재 메모리상의 대화 기록 (복사본)."""
        return list(self._transcript)

    def append_turn(self, turn: ChatTurn) -> None:
        """메모리상의 대화 기록에 턴을 추가한다."""
        self._transcript.append(turn)

    async def select(self, connection: Connection) -> ConnectionStatus:
        """커넥션을 선택하고 접속 테스트를 수행한다.

        이전 메모리상 대화 기록은 버리지만 저장소는 건드리지 않는다.

        Args:
            connection: 선택할 커넥션

        Returns:
            테스트 완료 시점의 세션 상태 (더 새로운 선택이 있었다면 그 상태)
        """
        self._generation += 1
        self._active = connection
        self._transcript = []
        self._transcript_loaded = False
        return await self._run_check(connection)

    async def retest(self) -> ConnectionStatus:
        """선택을 바꾸지 않고 활성 커넥션을 다시 테스트한다.

        selection generation과 이미 불러온 메모리상 대화 기록은 유지하므로
        진행 중인 질문의 응답은 그대로 반영된다.
        """
        if self._active is None:
            return self._status
        return await self._run_check(self._active)

    def deselect(self) -> None:
        """활성 커넥션을 해제하고 IDLE로 돌아간다."""
        self._generation += 1
        self._check_generation += 1
        self._active = None
        self._transcript = []
        self._transcript_loaded = False
        self._status = ConnectionStatus.idle()

    def forget(self, connection_id: str) -> None:
        """삭제된 커넥션이 활성 상태라면 해제한다."""
        if self._active is not None and self._active.id == connection_id:
            self.deselect()

    async def _run_check(self, connection: Connection) -> ConnectionStatus:
        self._check_generation += 1
        check = self._check_generation
        self._status = ConnectionStatus.testing()

        try:
            result = await self._backend.test_connectivity(connection.id)
        except LogicalFailure as e:
            outcome = ConnectionStatus.failed(e.detail or TEST_FAILED_MESSAGE)
        except TransportFailure as e:
            logger.warning("Connection test for %s failed: %s", connection.id, e)
            outcome = ConnectionStatus.failed(NETWORK_ERROR_MESSAGE)
        else:
            if result.success:
                outcome = ConnectionStatus.connected()
            else:
                outcome = ConnectionStatus.failed(
                    result.message or CONNECTION_FAILED_MESSAGE
                )

        if self._is_stale(check, connection):
            return self._status

        # 기록 로드가 끝날 때까지 TESTING 유지
        if outcome.state is SessionState.CONNECTED and not self._transcript_loaded:
            transcript = await asyncio.to_thread(
                self._transcript_store.load, connection.id
            )
            if self._is_stale(check, connection):
                return self._status
            self._transcript = transcript
            self._transcript_loaded = True

        self._status = outcome
        return outcome

    def _is_stale(self, check: int, connection: Connection) -> bool:
        if check == self._check_generation:
            return False
        logger.info(
            "Discarding stale connection test result for %s (check %d, current %d)",
            connection.id,
            check,
            self._check_generation,
        )
        return True
