"""대화 기록 저장소 어댑터 모듈."""

from dbchat.adapters.storage.blob_storage import (
    BlobStorage,
    JsonFileStorage,
    MemoryStorage,
)
from dbchat.adapters.storage.transcript_store import TranscriptStore

__all__ = ["BlobStorage", "JsonFileStorage", "MemoryStorage", "TranscriptStore"]
