"""분류 단계: 규칙 기반 카테고리/등급 부여

classification.yaml의 선언적 테이블(카테고리 → (keyword, weight) 목록)을
모든 카테고리에 동일하게 적용하는 가산 점수 방식.

    총점 = base_score + 최고 카테고리 점수 + 승인 소스 보너스 + 지역 보너스

분류는 기사를 삭제하지 않는다. Tier C도 결과에 남고 필터링은 소비자 몫이다.
"""

import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from feed_collector.models.news import Article, Category, Tier
from feed_collector.utils.config_manager import ConfigManager
from feed_collector.utils.logger import get_logger

logger = get_logger(__name__)


def _keyword_pattern(keyword: str) -> re.Pattern:
    # \b는 "n.j."처럼 구두점으로 끝나는 키워드에서 어긋나므로 앞뒤 단어 문자 여부로 판단
    return re.compile(r"(?<!\w)" + re.escape(keyword.strip().lower()) + r"(?!\w)")


@dataclass
class ClassificationRules:
    """파싱된 분류 테이블."""

    categories: List[Tuple[Category, List[Tuple[re.Pattern, float]]]] = field(default_factory=list)
    exclusion_terms: List[re.Pattern] = field(default_factory=list)
    approved_sources: frozenset = frozenset()
    blacklisted_sources: frozenset = frozenset()
    target_regions: Dict[str, List[re.Pattern]] = field(default_factory=dict)
    base_score: float = 0.0
    title_multiplier: float = 2.0
    category_floor: float = 1.0
    approved_source_bonus: float = 3.0
    region_bonus: float = 0.0
    tier_a: float = 10.0
    tier_b: float = 5.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ClassificationRules":
        data = data or {}
        categories = []
        for name, entries in (data.get("categories") or {}).items():
            try:
                category = Category(str(name).lower())
            except ValueError:
                logger.warning("알 수 없는 분류 카테고리 무시: %s", name)
                continue
            if category == Category.EXCLUDED:
                continue
            weighted = []
            for entry in entries or []:
                if isinstance(entry, dict) and entry.get("keyword"):
                    weighted.append((_keyword_pattern(str(entry["keyword"])), float(entry.get("weight", 1.0))))
                elif isinstance(entry, str) and entry.strip():
                    weighted.append((_keyword_pattern(entry), 1.0))
            categories.append((category, weighted))

        thresholds = data.get("tier_thresholds") or {}
        return cls(
            categories=categories,
            exclusion_terms=[_keyword_pattern(t) for t in data.get("exclusion_terms") or [] if str(t).strip()],
            approved_sources=frozenset(s.strip().lower() for s in data.get("approved_sources") or []),
            blacklisted_sources=frozenset(s.strip().lower() for s in data.get("blacklisted_sources") or []),
            target_regions={
                str(region): [_keyword_pattern(k) for k in keywords or [] if str(k).strip()]
                for region, keywords in (data.get("target_regions") or {}).items()
            },
            base_score=float(data.get("base_score", 0.0)),
            title_multiplier=float(data.get("title_multiplier", 2.0)),
            category_floor=float(data.get("category_floor", 1.0)),
            approved_source_bonus=float(data.get("approved_source_bonus", 3.0)),
            region_bonus=float(data.get("region_bonus", 0.0)),
            tier_a=float(thresholds.get("A", 10.0)),
            tier_b=float(thresholds.get("B", 5.0)),
        )


class RuleClassifier:
    """
    키워드/소스 규칙 분류기. 입력 기사를 바꾸지 않고 분류된 사본을 반환한다.

    사용법:
        classifier = RuleClassifier.from_config(config)
        classified = classifier.classify_batch(articles)
    """

    def __init__(self, rules: Optional[Dict[str, Any]] = None) -> None:
        self.rules = ClassificationRules.from_dict(rules)

    @classmethod
    def from_config(cls, config: ConfigManager) -> "RuleClassifier":
        return cls(config.get_section("classification"))

    def classify(self, article: Article) -> Article:
        """단일 기사 분류. 실패 시 relevant/C."""
        try:
            category, tier, score = self._score(article)
        except Exception as e:
            logger.warning("분류 실패, 기본값 적용: %s - %s", article.id, e)
            category, tier, score = Category.RELEVANT, Tier.C, 0.0
        return replace(article, category=category, tier=tier, score=score, regions=list(article.regions))

    def classify_batch(self, articles: List[Article]) -> List[Article]:
        results = [self.classify(a) for a in articles]
        counts: Dict[str, int] = {}
        for a in results:
            counts[a.category.value] = counts.get(a.category.value, 0) + 1
        logger.info("분류 완료: %d건 %s", len(results), counts)
        return results

    def _score(self, article: Article) -> Tuple[Category, Tier, float]:
        rules = self.rules
        title = (article.title or "").lower()
        body = (article.description or "").lower()
        source = (article.source or "").strip().lower()

        if source in rules.blacklisted_sources:
            logger.debug("차단 소스 제외: %s", article.source)
            return Category.EXCLUDED, Tier.C, 0.0
        for pattern in rules.exclusion_terms:
            if pattern.search(title) or pattern.search(body):
                logger.debug("제외어 매칭 (%s): %s", pattern.pattern, article.title)
                return Category.EXCLUDED, Tier.C, 0.0

        best_category, best_score = Category.RELEVANT, 0.0
        for category, keywords in rules.categories:
            bucket = 0.0
            for pattern, weight in keywords:
                if pattern.search(title):
                    bucket += weight * rules.title_multiplier
                elif pattern.search(body):
                    bucket += weight
            # 동점이면 테이블 순서가 앞선 카테고리
            if bucket > best_score:
                best_category, best_score = category, bucket

        if best_score <= rules.category_floor:
            best_category = Category.RELEVANT

        total = rules.base_score + best_score
        if source in rules.approved_sources:
            total += rules.approved_source_bonus
        if self._mentions_target_region(title + " " + body):
            total += rules.region_bonus

        if total >= rules.tier_a:
            tier = Tier.A
        elif total >= rules.tier_b:
            tier = Tier.B
        else:
            tier = Tier.C
        return best_category, tier, total

    def _mentions_target_region(self, text: str) -> bool:
        return any(
            pattern.search(text)
            for patterns in self.rules.target_regions.values()
            for pattern in patterns
        )
