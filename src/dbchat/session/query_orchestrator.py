"""자연어 질문 한 건의 질문-응답 교환을 수행하는 오케스트레이터."""

import asyncio
import logging
from typing import Optional

from dbchat.adapters.backend.api_client import BackendClient
from dbchat.adapters.storage.transcript_store import TranscriptStore
from dbchat.core.exceptions import LogicalFailure, TransportFailure
from dbchat.core.models import ChatTurn, Exchange, Role
from dbchat.display.chart_classifier import ChartClassifier
from dbchat.session.connection_session import ConnectionSession

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Query executed successfully"
QUERY_FAILED_MESSAGE = "Failed to execute query"
NETWORK_ERROR_MESSAGE = "Network error. Please check your connection."


class QueryOrchestrator:
    """CONNECTED 상태의 세션에 대해 질문을 실행한다.

    한 세션당 동시에 하나의 요청만 진행된다.
    """

    def __init__(
        self,
        session: ConnectionSession,
        backend: BackendClient,
        transcript_store: TranscriptStore,
        classifier: Optional[ChartClassifier] = None,
    ) -> None:
        """오케스트레이터 초기화.

        Args:
            session: 커넥션 세션
            backend: 백엔드 클라이언트
            transcript_store: 대화 기록 저장소
            classifier: 차트 분류기 (None이면 기본 분류기)
        """
        self._session = session
        self._backend = backend
        self._transcript_store = transcript_store
        self._classifier = classifier or ChartClassifier()
        self._pending: Optional[Exchange] = None

    @property
    def is_busy(self) -> bool:
        """요청이 진행 중인지 여부."""
        return self._pending is not None

    @property
    def pending(self) -> Optional[Exchange]:
        return self._pending

    async def execute(self, question: str) -> Optional[Exchange]:
        """질문을 실행하고 대화 기록을 갱신한다.

        전제 조건(비어 있지 않은 질문, 활성 커넥션, CONNECTED 상태, 비진행 중)을
        만족하지 않으면 아무것도 하지 않는다.

        Args:
            question: 자연어 질문

        Returns:
            완료된 교환 기록, 실행하지 않았으면 None
        """
        if not question.strip():
            return None
        connection = self._session.active
        if connection is None:
            return None
        if not self._session.is_connected:
            return None
        if self.is_busy:
            logger.debug("Query rejected: another request is in flight")
            return None

        exchange = Exchange(
            connection_id=connection.id,
            question=ChatTurn.user(question),
            generation=self._session.generation,
        )
        self._pending = exchange
        self._session.append_turn(exchange.question)

        # 저장이 끝날 때까지 busy 유지
        try:
            answer = await self._ask(connection.id, question)

            if exchange.generation != self._session.generation:
                logger.info(
                    "Discarding answer for connection %s: selection changed while in flight",
                    connection.id,
                )
                exchange.discard()
                return exchange

            exchange.finalize(answer)
            self._session.append_turn(answer)
            await asyncio.to_thread(
                self._transcript_store.save, connection.id, self._session.transcript
            )
            return exchange
        finally:
            self._pending = None

    async def _ask(self, connection_id: str, question: str) -> ChatTurn:
        """백엔드에 질문을 보내고 assistant 턴을 만든다."""
        try:
            result = await self._backend.execute_question(connection_id, question)
        except LogicalFailure as e:
            return ChatTurn(
                Role.ASSISTANT, e.detail or QUERY_FAILED_MESSAGE, error=True
            )
        except TransportFailure as e:
            logger.warning("Query for connection %s failed: %s", connection_id, e)
            return ChatTurn(Role.ASSISTANT, NETWORK_ERROR_MESSAGE, error=True)

        return ChatTurn(
            role=Role.ASSISTANT,
            content=result.query or SUCCESS_MESSAGE,
            results=result.results,
            chart=self._classifier.classify(result.results),
        )
