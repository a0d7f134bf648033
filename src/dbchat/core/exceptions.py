"""에러 분류 정의."""

from typing import Optional


class DBChatError(Exception):
    """dbchat 기본 에러."""

    pass


class ValidationError(DBChatError):
    """필수 입력값 누락 등 네트워크 호출 전에 거부되는 에러."""

    pass


class LogicalFailure(DBChatError):
    """백엔드가 명시적으로 실패를 보고한 경우."""

    def __init__(self, detail: Optional[str] = None, status_code: Optional[int] = None) -> None:
        """에러 초기화.

        Args:
            detail: 백엔드가 제공한 사람이 읽을 수 있는 메시지
            status_code: HTTP 상태 코드
        """
        super().__init__(detail or "Backend reported a failure")
        self.detail = detail
        self.status_code = status_code


class TransportFailure(DBChatError):
    """네트워크 또는 응답 파싱 실패 (구조화된 메시지 없음)."""

    pass


class PersistenceFailure(DBChatError):
    """로컬 저장소 읽기/쓰기 실패."""

    pass
