"""커넥션별 대화 기록 저장소."""

import json
import logging
from typing import Sequence

from dbchat.adapters.storage.blob_storage import BlobStorage
from dbchat.core.exceptions import PersistenceFailure
from dbchat.core.models import ChatTurn

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "chatMessages_"


class TranscriptStore:
    """커넥션 id마다 하나의 대화 기록 블롭을 관리한다.

    저장은 best-effort: 읽기/쓰기 실패는 로그만 남기고 삼킨다.
    """

    def __init__(self, storage: BlobStorage, key_prefix: str = DEFAULT_KEY_PREFIX) -> None:
        """저장소 초기화.

        Args:
            storage: 블롭 저장소
            key_prefix: 저장 키 접두사
        """
        self._storage = storage
        self._key_prefix = key_prefix

    def key_for(self, connection_id: str) -> str:
        """커넥션 id에서 저장 키를 만든다."""
        return f"{self._key_prefix}{connection_id}"

    def load(self, connection_id: str) -> list[ChatTurn]:
        """저장된 대화 기록을 불러온다.

        Args:
            connection_id: 커넥션 id

        Returns:
            대화 턴 리스트 (없거나 읽기 실패 시 빈 리스트)
        """
        try:
            blob = self._storage.get(self.key_for(connection_id))
            if blob is None:
                return []
            return self._decode(blob)
        except (PersistenceFailure, ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning(
                "Transcript load failed for connection %s: %s", connection_id, e
            )
            return []

    def save(self, connection_id: str, turns: Sequence[ChatTurn]) -> None:
        """대화 기록 전체를 덮어쓴다.

        Args:
            connection_id: 커넥션 id
            turns: 저장할 대화 턴 목록
        """
        try:
            blob = json.dumps([turn.to_dict() for turn in turns], ensure_ascii=False)
            self._storage.put(self.key_for(connection_id), blob)
        except (PersistenceFailure, TypeError, ValueError) as e:
            logger.warning(
                "Transcript save failed for connection %s: %s", connection_id, e
            )

    def clear(self, connection_id: str) -> None:
        """저장된 대화 기록을 삭제한다."""
        try:
            self._storage.delete(self.key_for(connection_id))
        except PersistenceFailure as e:
            logger.warning(
                "Transcript clear failed for connection %s: %s", connection_id, e
            )

    def _decode(self, blob: str) -> list[ChatTurn]:
        data = json.loads(blob)
        if not isinstance(data, list):
            raise TypeError("stored transcript is not a list")
        return [ChatTurn.from_dict(item) for item in data]
