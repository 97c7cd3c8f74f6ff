"""Source Registry - 피드 소스 설정 중앙 관리"""

from typing import Any, Dict, List, Optional

from feed_collector.models.source import SourceConfig
from feed_collector.utils.config_manager import ConfigManager
from feed_collector.utils.logger import get_logger

logger = get_logger(__name__)


class SourceRegistry:
    """
    sources_registry.yaml에서 SourceConfig 목록을 로드한다.

    - 선언 순서 유지 (중복 제거 시 first-seen 기준이 된다)
    - URL이 없거나 중복된 항목은 건너뜀
    - 로드 이후 소스 설정은 읽기 전용

    사용법:
        config = ConfigManager()
        registry = SourceRegistry(config)
        sources = registry.get_enabled_sources()
    """

    def __init__(self, config: ConfigManager) -> None:
        self._config = config
        self._sources: List[SourceConfig] = []
        self._load()

    def _load(self) -> None:
        """sources_registry.yaml에서 소스 로드."""
        registry_data = self._config.get_file_config("sources_registry")
        if not registry_data:
            logger.warning("sources_registry.yaml을 찾을 수 없습니다")
            return

        seen_urls = set()
        for entry in registry_data.get("sources", []) or []:
            if not isinstance(entry, dict):
                logger.warning("잘못된 소스 항목 무시: %r", entry)
                continue
            source = SourceConfig.from_dict(entry)
            if not source.url:
                logger.warning("URL 없는 소스 무시: %s", source.name or "(이름 없음)")
                continue
            if source.url in seen_urls:
                logger.warning("중복 URL 소스 무시: %s (%s)", source.name, source.url)
                continue
            seen_urls.add(source.url)
            self._sources.append(source)
            logger.debug("소스 로드: %s (region=%s, enabled=%s)", source.name, source.region, source.enabled)

        logger.info("소스 레지스트리 로드 완료: %d개 소스 (활성 %d개)",
                    len(self._sources), self.enabled_count)

    # ===== 조회 =====

    def get(self, name: str) -> Optional[SourceConfig]:
        """이름으로 소스 조회."""
        for source in self._sources:
            if source.name == name:
                return source
        return None

    def get_by_url(self, url: str) -> Optional[SourceConfig]:
        """URL로 소스 조회."""
        for source in self._sources:
            if source.url == url:
                return source
        return None

    def get_all(self) -> List[SourceConfig]:
        """전체 소스 목록 (선언 순서)."""
        return list(self._sources)

    def get_enabled_sources(self) -> List[SourceConfig]:
        """활성 소스만 (선언 순서)."""
        return [s for s in self._sources if s.enabled]

    def get_by_region(self, region: str) -> List[SourceConfig]:
        """특정 지역 태그의 활성 소스."""
        return [s for s in self._sources if s.enabled and s.region == region]

    # ===== 통계 =====

    @property
    def total_count(self) -> int:
        return len(self._sources)

    @property
    def enabled_count(self) -> int:
        return len(self.get_enabled_sources())

    def get_stats(self) -> Dict[str, Any]:
        """레지스트리 통계."""
        region_counts: Dict[str, int] = {}
        for source in self._sources:
            region_counts[source.region] = region_counts.get(source.region, 0) + 1
        return {
            "total": self.total_count,
            "enabled": self.enabled_count,
            "by_region": region_counts,
        }
