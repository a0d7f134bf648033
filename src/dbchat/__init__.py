"""자연어로 데이터베이스와 대화하는 클라이언트 코어."""

__version__ = "0.1.0"
