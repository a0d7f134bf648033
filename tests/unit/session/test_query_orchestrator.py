"""QueryOrchestrator 테스트."""

import asyncio
from unittest.mock import MagicMock, patch

import pytest

from dbchat.adapters.backend.api_client import (
    BackendClient,
    ConnectivityResult,
    QueryAnswer,
)
from dbchat.adapters.storage.blob_storage import MemoryStorage
from dbchat.adapters.storage.transcript_store import TranscriptStore
from dbchat.core.exceptions import LogicalFailure, TransportFailure
from dbchat.core.models import (
    ChartKind,
    ChatTurn,
    Connection,
    EngineKind,
    ExchangeState,
    Role,
)
from dbchat.session.connection_session import ConnectionSession
from dbchat.session.query_orchestrator import (
    NETWORK_ERROR_MESSAGE,
    QUERY_FAILED_MESSAGE,
    SUCCESS_MESSAGE,
    QueryOrchestrator,
)


def make_connection(connection_id: str = "1") -> Connection:
    return Connection(
        id=connection_id, name="Shop", engine=EngineKind.POSTGRESQL, database="shop"
    )


@pytest.fixture
def backend() -> MagicMock:
    """백엔드 mock fixture."""
    mock = MagicMock(spec=BackendClient)
    mock.test_connectivity.return_value = ConnectivityResult(success=True)
    mock.execute_question.return_value = QueryAnswer(
        query="SELECT city, COUNT(*) AS n FROM users GROUP BY city",
        results=[{"city": "Seoul", "n": 3}, {"city": "Busan", "n": 2}],
    )
    return mock


@pytest.fixture
def store() -> TranscriptStore:
    """메모리 대화 기록 저장소 fixture."""
    return TranscriptStore(MemoryStorage())


@pytest.fixture
def session(backend: MagicMock, store: TranscriptStore) -> ConnectionSession:
    """세션 fixture."""
    return ConnectionSession(backend, store)


@pytest.fixture
def orchestrator(
    session: ConnectionSession, backend: MagicMock, store: TranscriptStore
) -> QueryOrchestrator:
    """오케스트레이터 fixture."""
    return QueryOrchestrator(session, backend, store)


class TestQueryOrchestratorPreconditions:
    """전제 조건 테스트."""

    @pytest.mark.asyncio
    async def test_blank_question_is_noop(
        self, orchestrator: QueryOrchestrator, session: ConnectionSession, backend: MagicMock
    ) -> None:
        """공백 질문은 아무 일도 하지 않아야 함."""
        await session.select(make_connection())

        assert await orchestrator.execute("   ") is None
        backend.execute_question.assert_not_called()
        assert session.transcript == []

    @pytest.mark.asyncio
    async def test_without_active_connection_is_noop(
        self, orchestrator: QueryOrchestrator, backend: MagicMock
    ) -> None:
        """활성 커넥션이 없으면 아무 일도 하지 않아야 함."""
        assert await orchestrator.execute("how many users?") is None
        backend.execute_question.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_session_is_noop(
        self, orchestrator: QueryOrchestrator, session: ConnectionSession, backend: MagicMock
    ) -> None:
        """CONNECTED가 아니면 아무 일도 하지 않아야 함."""
        backend.test_connectivity.return_value = ConnectivityResult(success=False)
        await session.select(make_connection())

        assert await orchestrator.execute("how many users?") is None
        assert session.transcript == []


class TestQueryOrchestratorSuccess:
    """성공 경로 테스트."""

    @pytest.mark.asyncio
    async def test_appends_user_and_assistant_turns_and_persists(
        self,
        orchestrator: QueryOrchestrator,
        session: ConnectionSession,
        store: TranscriptStore,
        backend: MagicMock,
    ) -> None:
        """사용자/assistant 턴을 추가하고 전체 기록을 저장해야 함."""
        # Given
        await session.select(make_connection("1"))

        # When
        exchange = await orchestrator.execute("users per city")

        # Then
        backend.execute_question.assert_awaited_once_with("1", "users per city")
        transcript = session.transcript
        assert [turn.role for turn in transcript] == [Role.USER, Role.ASSISTANT]
        assert transcript[0].content == "users per city"
        assert transcript[1].content.startswith("SELECT city")
        assert transcript[1].chart.kind is ChartKind.PIE
        assert transcript[1].chart.value_columns == ("n",)
        assert exchange.state is ExchangeState.FINALIZED
        assert store.load("1") == transcript

    @pytest.mark.asyncio
    async def test_missing_query_uses_generic_message(
        self, orchestrator: QueryOrchestrator, session: ConnectionSession, backend: MagicMock
    ) -> None:
        """생성된 SQL이 없으면 기본 성공 메시지를 사용해야 함."""
        backend.execute_question.return_value = QueryAnswer()
        await session.select(make_connection())

        exchange = await orchestrator.execute("hello")

        assert exchange.answer.content == SUCCESS_MESSAGE
        assert exchange.answer.is_text_only
        assert exchange.answer.chart.kind is ChartKind.NONE

    @pytest.mark.asyncio
    async def test_empty_result_is_kept_distinct(
        self, orchestrator: QueryOrchestrator, session: ConnectionSession, backend: MagicMock
    ) -> None:
        """0행 결과는 텍스트 전용 응답과 구분되어야 함."""
        backend.execute_question.return_value = QueryAnswer(
            query="SELECT * FROM users WHERE 1 = 0", results=[]
        )
        await session.select(make_connection())

        exchange = await orchestrator.execute("nobody")

        assert exchange.answer.has_empty_result
        assert not exchange.answer.is_text_only

    @pytest.mark.asyncio
    async def test_appends_to_previously_loaded_transcript(
        self,
        orchestrator: QueryOrchestrator,
        session: ConnectionSession,
        store: TranscriptStore,
    ) -> None:
        """저장된 기록 뒤에 새 턴을 이어 붙여야 함."""
        earlier = [ChatTurn.user("old"), ChatTurn(Role.ASSISTANT, "SELECT 1")]
        store.save("1", earlier)
        await session.select(make_connection("1"))

        await orchestrator.execute("new")

        assert store.load("1")[:2] == earlier
        assert len(store.load("1")) == 4


class TestQueryOrchestratorFailures:
    """실패 경로 테스트."""

    @pytest.mark.asyncio
    async def test_logical_failure_appends_verbatim_error_turn(
        self,
        orchestrator: QueryOrchestrator,
        session: ConnectionSession,
        store: TranscriptStore,
        backend: MagicMock,
    ) -> None:
        """백엔드 실패는 detail 그대로의 에러 턴을 추가하고 저장해야 함."""
        backend.execute_question.side_effect = LogicalFailure("Unknown column 'foo'", 400)
        await session.select(make_connection("1"))

        exchange = await orchestrator.execute("foo?")

        answer = session.transcript[-1]
        assert answer.error is True
        assert answer.content == "Unknown column 'foo'"
        assert exchange.state is ExchangeState.ERRORED
        assert store.load("1") == session.transcript

    @pytest.mark.asyncio
    async def test_logical_failure_without_detail_uses_fallback(
        self, orchestrator: QueryOrchestrator, session: ConnectionSession, backend: MagicMock
    ) -> None:
        """detail이 없으면 기본 실패 메시지를 사용해야 함."""
        backend.execute_question.side_effect = LogicalFailure(None, 500)
        await session.select(make_connection())

        exchange = await orchestrator.execute("foo?")

        assert exchange.answer.content == QUERY_FAILED_MESSAGE

    @pytest.mark.asyncio
    async def test_transport_failure_uses_fixed_message(
        self, orchestrator: QueryOrchestrator, session: ConnectionSession, backend: MagicMock
    ) -> None:
        """네트워크 실패는 고정 메시지의 에러 턴을 추가해야 함."""
        backend.execute_question.side_effect = TransportFailure("reset by peer")
        await session.select(make_connection())

        exchange = await orchestrator.execute("foo?")

        assert exchange.answer.error is True
        assert exchange.answer.content == NETWORK_ERROR_MESSAGE
        backend.execute_question.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_mapping_rows_settle_without_chart(
        self,
        orchestrator: QueryOrchestrator,
        session: ConnectionSession,
        store: TranscriptStore,
        backend: MagicMock,
    ) -> None:
        """매핑이 아닌 결과 행이어도 교환이 완료되고 차트 없이 저장되어야 함."""
        backend.execute_question.return_value = QueryAnswer(query="SELECT 1", results=[[1, 2]])
        await session.select(make_connection("1"))

        exchange = await orchestrator.execute("q")

        assert exchange.state is ExchangeState.FINALIZED
        assert exchange.answer.chart.kind is ChartKind.NONE
        assert not orchestrator.is_busy
        assert len(store.load("1")) == 2

    @pytest.mark.asyncio
    async def test_accepts_next_question_after_failure(
        self, orchestrator: QueryOrchestrator, session: ConnectionSession, backend: MagicMock
    ) -> None:
        """실패 후에도 다음 질문을 받아야 함."""
        backend.execute_question.side_effect = [
            TransportFailure("down"),
            QueryAnswer(query="SELECT 1", results=[{"x": 1}]),
        ]
        await session.select(make_connection())

        await orchestrator.execute("first")
        second = await orchestrator.execute("second")

        assert not orchestrator.is_busy
        assert second.state is ExchangeState.FINALIZED
        assert len(session.transcript) == 4


class TestQueryOrchestratorConcurrency:
    """동시 요청 제어 테스트."""

    @pytest.mark.asyncio
    async def test_second_execute_while_busy_is_noop(
        self, orchestrator: QueryOrchestrator, session: ConnectionSession, backend: MagicMock
    ) -> None:
        """요청 진행 중 두 번째 호출은 무시되어야 함."""
        # Given
        gate = asyncio.Event()

        async def slow_answer(connection_id: str, question: str) -> QueryAnswer:
            await gate.wait()
            return QueryAnswer(query="SELECT 1")

        backend.execute_question.side_effect = slow_answer
        await session.select(make_connection())

        # When
        first = asyncio.create_task(orchestrator.execute("first"))
        await asyncio.sleep(0)
        second = await orchestrator.execute("second")

        # Then
        assert orchestrator.is_busy
        assert orchestrator.pending.is_pending
        assert second is None
        assert [turn.content for turn in session.transcript] == ["first"]

        gate.set()
        await first
        assert not orchestrator.is_busy
        assert [turn.role for turn in session.transcript] == [Role.USER, Role.ASSISTANT]
        backend.execute_question.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_answer_after_reselection_is_discarded(
        self,
        orchestrator: QueryOrchestrator,
        session: ConnectionSession,
        store: TranscriptStore,
        backend: MagicMock,
    ) -> None:
        """요청 중 다른 커넥션을 선택하면 늦은 응답은 새 기록에 들어가지 않아야 함."""
        gate = asyncio.Event()

        async def slow_answer(connection_id: str, question: str) -> QueryAnswer:
            await gate.wait()
            return QueryAnswer(query="SELECT 1")

        backend.execute_question.side_effect = slow_answer
        await session.select(make_connection("1"))

        task = asyncio.create_task(orchestrator.execute("slow"))
        await asyncio.sleep(0)
        await session.select(make_connection("2"))
        gate.set()
        exchange = await task

        assert exchange.state is ExchangeState.DISCARDED
        assert session.transcript == []
        assert store.load("2") == []

    @pytest.mark.asyncio
    async def test_answer_survives_retest_of_same_connection(
        self,
        orchestrator: QueryOrchestrator,
        session: ConnectionSession,
        store: TranscriptStore,
        backend: MagicMock,
    ) -> None:
        """요청 중 같은 커넥션을 재테스트해도 교환이 기록되고 저장되어야 함."""
        # Given
        gate = asyncio.Event()

        async def slow_answer(connection_id: str, question: str) -> QueryAnswer:
            await gate.wait()
            return QueryAnswer(query="SELECT 1", results=[{"x": 1}])

        backend.execute_question.side_effect = slow_answer
        await session.select(make_connection("1"))

        # When
        task = asyncio.create_task(orchestrator.execute("q"))
        await asyncio.sleep(0)
        await session.retest()
        gate.set()
        exchange = await task

        # Then
        assert exchange.state is ExchangeState.FINALIZED
        assert [turn.role for turn in session.transcript] == [Role.USER, Role.ASSISTANT]
        assert store.load("1") == session.transcript

    @pytest.mark.asyncio
    async def test_answer_after_deselect_is_discarded(
        self,
        orchestrator: QueryOrchestrator,
        session: ConnectionSession,
        store: TranscriptStore,
        backend: MagicMock,
    ) -> None:
        """요청 중 커넥션을 해제하면 늦은 응답은 저장되지 않아야 함."""
        gate = asyncio.Event()

        async def slow_answer(connection_id: str, question: str) -> QueryAnswer:
            await gate.wait()
            return QueryAnswer(query="SELECT 1")

        backend.execute_question.side_effect = slow_answer
        await session.select(make_connection("1"))

        task = asyncio.create_task(orchestrator.execute("q"))
        await asyncio.sleep(0)
        session.deselect()
        gate.set()
        exchange = await task

        assert exchange.state is ExchangeState.DISCARDED
        assert store.load("1") == []

    @pytest.mark.asyncio
    async def test_stays_busy_until_transcript_is_saved(
        self,
        orchestrator: QueryOrchestrator,
        session: ConnectionSession,
        store: TranscriptStore,
    ) -> None:
        """기록 저장이 끝날 때까지 다음 질문을 받지 않아야 함."""
        await session.select(make_connection("1"))
        gate = asyncio.Event()

        async def gated_to_thread(func, *args):
            await gate.wait()
            return func(*args)

        with patch.object(asyncio, "to_thread", gated_to_thread):
            first = asyncio.create_task(orchestrator.execute("first"))
            for _ in range(3):
                await asyncio.sleep(0)

            assert orchestrator.is_busy
            assert await orchestrator.execute("second") is None
            assert store.load("1") == []

            gate.set()
            exchange = await first

        assert not orchestrator.is_busy
        assert exchange.state is ExchangeState.FINALIZED
        assert len(store.load("1")) == 2
