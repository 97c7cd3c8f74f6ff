"""피드 소스 데이터 모델"""

from dataclasses import dataclass
from typing import Any, Dict

from feed_collector.utils.url_utils import get_domain


@dataclass(frozen=True)
class SourceConfig:
    """피드 소스 설정. 로드 후 불변."""

    name: str = ""
    url: str = ""
    region: str = ""
    enabled: bool = True

    @property
    def domain(self) -> str:
        """www. 제거한 호스트명."""
        return get_domain(self.url)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceConfig":
        """딕셔너리에서 SourceConfig 생성."""
        enabled = data.get("enabled", True)
        if isinstance(enabled, str):
            enabled = enabled.strip().lower() not in ("false", "0", "no", "off")
        return cls(
            name=str(data.get("name", "") or ""),
            url=str(data.get("url", "") or "").strip(),
            region=str(data.get("region", "") or ""),
            enabled=bool(enabled),
        )
