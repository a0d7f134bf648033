"""스모크 테스트 - 프로젝트 설정 검증."""


def test_project_imports():
    """dbchat 패키지가 정상적으로 임포트되는지 확인한다."""
    import dbchat

    assert dbchat.__version__ == "0.1.0"


def test_session_module_imports():
    """session 모듈이 정상적으로 임포트되는지 확인한다."""
    from dbchat.session import context

    assert context.SessionContext is not None
