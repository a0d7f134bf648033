"""키-값 블롭 저장소 어댑터."""

import os
from pathlib import Path
from typing import Optional, Protocol
from urllib.parse import quote

from dbchat.core.exceptions import PersistenceFailure


class BlobStorage(Protocol):
    """문자열 블롭을 키로 저장하는 저장소."""

    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, blob: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class MemoryStorage:
    """프로세스 메모리 저장소."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def put(self, key: str, blob: str) -> None:
        self._data[key] = blob

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)


class JsonFileStorage:
    """디렉터리 아래에 키당 하나의 JSON 파일로 저장하는 저장소."""

    def __init__(self, directory: str | Path) -> None:
        """저장소 초기화.

        Args:
            directory: 파일을 저장할 디렉터리 (없으면 첫 쓰기 때 생성)
        """
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        """키에 대응하는 파일 경로.

        키는 퍼센트 인코딩되어 서로 다른 키가 같은 파일로 겹치지 않는다.
        """
        return self._directory / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceFailure(f"Failed to read {path}: {e}") from e

    def put(self, key: str, blob: str) -> None:
        path = self.path_for(key)
        tmp_path = path.with_suffix(".json.tmp")
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(blob, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceFailure(f"Failed to write {path}: {e}") from e

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise PersistenceFailure(f"Failed to delete {path}: {e}") from e
