"""애플리케이션 설정 모듈."""

from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """애플리케이션 설정."""

    # 백엔드 API 설정
    api_base_url: str = "http://localhost:8000"
    api_timeout: float = 30.0
    # 개발용 고정 토큰 (설정 시 로그인 생략)
    api_token: Optional[str] = None

    # 대화 기록 저장소 설정
    transcript_dir: str = ".dbchat/transcripts"
    transcript_key_prefix: str = "chatMessages_"

    # 로깅 설정
    log_level: str = "INFO"

    model_config = {
        "env_prefix": "DBCHAT_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }
