"""TranscriptStore 테스트."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from dbchat.adapters.storage.blob_storage import JsonFileStorage, MemoryStorage
from dbchat.adapters.storage.transcript_store import TranscriptStore
from dbchat.core.exceptions import PersistenceFailure
from dbchat.core.models import ChartKind, ChartSpec, ChatTurn, Role


@pytest.fixture
def transcript() -> list[ChatTurn]:
    """샘플 대화 기록 fixture."""
    return [
        ChatTurn.user("도시별 사용자 수"),
        ChatTurn(
            role=Role.ASSISTANT,
            content="SELECT city, COUNT(*) AS n FROM users GROUP BY city",
            results=[{"city": "Seoul", "n": 3}, {"city": "Busan", "n": None}],
            chart=ChartSpec(ChartKind.PIE, "city", ("n",)),
        ),
        ChatTurn.user("없는 테이블"),
        ChatTurn(Role.ASSISTANT, "Table not found", error=True),
    ]


class TestTranscriptStoreRoundTrip:
    """저장/불러오기 테스트."""

    def test_save_then_load_returns_equal_sequence(
        self, transcript: list[ChatTurn]
    ) -> None:
        """저장 후 불러오면 같은 시퀀스를 반환해야 함."""
        store = TranscriptStore(MemoryStorage())

        store.save("1", transcript)

        assert store.load("1") == transcript

    def test_round_trip_through_files(
        self, tmp_path: Path, transcript: list[ChatTurn]
    ) -> None:
        """파일 저장소에서도 같은 시퀀스를 반환해야 함."""
        TranscriptStore(JsonFileStorage(tmp_path)).save("1", transcript)

        reloaded = TranscriptStore(JsonFileStorage(tmp_path)).load("1")

        assert reloaded == transcript

    def test_save_overwrites_previous_transcript(
        self, transcript: list[ChatTurn]
    ) -> None:
        """저장은 기존 기록 전체를 덮어써야 함."""
        store = TranscriptStore(MemoryStorage())
        store.save("1", transcript)

        store.save("1", transcript[:1])

        assert store.load("1") == transcript[:1]

    def test_missing_transcript_is_empty(self) -> None:
        """저장된 기록이 없으면 빈 리스트를 반환해야 함."""
        assert TranscriptStore(MemoryStorage()).load("unknown") == []


class TestTranscriptStoreKeys:
    """키 네임스페이스 테스트."""

    def test_connections_do_not_share_transcripts(
        self, transcript: list[ChatTurn]
    ) -> None:
        """커넥션마다 별도의 기록을 가져야 함."""
        store = TranscriptStore(MemoryStorage())

        store.save("1", transcript)

        assert store.load("11") == []
        assert store.key_for("1") == "chatMessages_1"

    def test_clear_removes_only_that_connection(
        self, transcript: list[ChatTurn]
    ) -> None:
        """clear는 해당 커넥션 기록만 지워야 함."""
        store = TranscriptStore(MemoryStorage())
        store.save("1", transcript)
        store.save("2", transcript)

        store.clear("1")

        assert store.load("1") == []
        assert store.load("2") == transcript


class TestTranscriptStoreFailures:
    """저장소 실패 처리 테스트."""

    def test_read_failure_degrades_to_empty(self) -> None:
        """읽기 실패 시 빈 리스트를 반환해야 함."""
        storage = MagicMock()
        storage.get.side_effect = PersistenceFailure("disk gone")

        assert TranscriptStore(storage).load("1") == []

    @pytest.mark.parametrize(
        "blob",
        ["not json", '{"role": "user"}', '[{"role": "robot", "content": "x"}]', "[1, 2]"],
    )
    def test_malformed_blob_degrades_to_empty(self, blob: str) -> None:
        """형식이 잘못된 기록은 빈 리스트로 처리해야 함."""
        storage = MemoryStorage()
        storage.put("chatMessages_1", blob)

        assert TranscriptStore(storage).load("1") == []

    def test_write_failure_is_swallowed(self, transcript: list[ChatTurn]) -> None:
        """쓰기 실패는 예외를 전파하지 않아야 함."""
        storage = MagicMock()
        storage.put.side_effect = PersistenceFailure("read-only")

        TranscriptStore(storage).save("1", transcript)

        storage.put.assert_called_once()

    def test_clear_failure_is_swallowed(self) -> None:
        """삭제 실패는 예외를 전파하지 않아야 함."""
        storage = MagicMock()
        storage.delete.side_effect = PersistenceFailure("locked")

        TranscriptStore(storage).clear("1")
