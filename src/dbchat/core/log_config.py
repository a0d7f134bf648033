"""로깅 설정 모듈."""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = logging.INFO) -> None:
    """루트 로거를 설정한다.

    Args:
        level: 로그 레벨 (이름 또는 숫자)
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT)
