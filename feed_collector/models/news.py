"""기사 데이터 모델"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


class Category(Enum):
    """분류 카테고리."""

    RELEVANT = "relevant"
    TRANSACTION = "transaction"
    AVAILABILITIES = "availabilities"
    PEOPLE = "people"
    EXCLUDED = "excluded"


class Tier(Enum):
    """분류 신뢰 등급 (A가 가장 높음)."""

    A = "A"
    B = "B"
    C = "C"

    @property
    def rank(self) -> int:
        return {"A": 3, "B": 2, "C": 1}[self.value]


@dataclass
class Article:
    """정규화된 기사 (파이프라인의 기본 단위).

    id는 실행 내에서 유일하고 한 번 부여되면 바뀌지 않는다.
    category/tier는 분류 단계에서만 채워진다.
    """

    id: str = ""
    title: str = ""
    description: str = ""
    link: str = ""

    published_at: Optional[datetime] = None
    fetched_at: Optional[datetime] = None

    source: str = "Unknown"
    source_url: str = ""

    author: Optional[str] = None
    regions: List[str] = field(default_factory=list)
    image_url: Optional[str] = None

    # 분류 결과 (분류 전에는 None)
    category: Optional[Category] = None
    tier: Optional[Tier] = None
    score: float = 0.0

    @property
    def is_classified(self) -> bool:
        return self.category is not None and self.tier is not None

    def to_dict(self) -> dict:
        """렌더러 전달용 직렬화."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "source": self.source,
            "author": self.author,
            "regions": list(self.regions),
            "image_url": self.image_url,
            "category": self.category.value if self.category else None,
            "tier": self.tier.value if self.tier else None,
        }
