"""키-값 저장소 추상화

서킷 브레이커 테이블, 우회 캐시, 쿠키, 레이트 리밋 원장이 공통으로 쓰는 저장소.
메모리/파일/DB 어느 쪽으로 바꿔도 파이프라인 로직은 변하지 않는다.
"""

import copy
import json
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from feed_collector.utils.logger import get_logger

logger = get_logger(__name__)


class KeyValueStore(ABC):
    """get/set/delete 기반 저장소 인터페이스.

    구현체는 load_all/save_all만 제공하면 되고, 단건 연산은 전체 문서
    read-modify-write로 처리된다.
    """

    @abstractmethod
    def load_all(self) -> Dict[str, Any]:
        """저장된 전체 문서 반환 (수정해도 저장소에 반영되지 않는 사본)."""
        ...

    @abstractmethod
    def save_all(self, data: Dict[str, Any]) -> None:
        """전체 문서 교체."""
        ...

    def get(self, key: str, default: Any = None) -> Any:
        return self.load_all().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self.load_all()
        data[key] = value
        self.save_all(data)

    def delete(self, key: str) -> None:
        data = self.load_all()
        if key in data:
            del data[key]
            self.save_all(data)

    def keys(self):
        return list(self.load_all().keys())

    def __len__(self) -> int:
        return len(self.load_all())


class InMemoryStore(KeyValueStore):
    """프로세스 수명 동안만 유지되는 메모리 저장소."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}

    def load_all(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def save_all(self, data: Dict[str, Any]) -> None:
        self._data = copy.deepcopy(data)


class JsonFileStore(KeyValueStore):
    """
    JSON 문서 하나로 저장되는 파일 저장소.

    - 읽기 실패(파일 없음/손상) → 빈 문서
    - 쓰기 실패 → 경고 로그 후 계속 진행 (best-effort 영속화)
    - 임시 파일에 쓴 뒤 os.replace로 교체
    """

    def __init__(self, path: str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load_all(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("저장소 로드 실패: %s - %s", self._path, e)
            return {}
        if not isinstance(data, dict):
            logger.warning("저장소 형식 오류 (dict 아님): %s", self._path)
            return {}
        return data

    def save_all(self, data: Dict[str, Any]) -> None:
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("저장소 저장 실패: %s - %s", self._path, e)
