"""백엔드 API 어댑터 모듈."""

from dbchat.adapters.backend.api_client import (
    BackendClient,
    ConnectivityResult,
    QueryAnswer,
)

__all__ = ["BackendClient", "ConnectivityResult", "QueryAnswer"]
