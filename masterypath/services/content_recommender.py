"""
Content Recommender: picks a practice item for the student's current KC.

Items are rated 1-5 for difficulty. The target difficulty tracks mastery
(ceil(p_mastery * 5)); items the student answered recently are pushed down
so practice does not repeat the same question.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional

from masterypath.core.config import get_settings


@dataclass
class ContentItem:
    item_id: str
    kc_id: str
    difficulty: int = 3          # 1 (easiest) .. 5 (hardest)
    title: str = ""

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "kc_id": self.kc_id,
            "difficulty": self.difficulty,
            "title": self.title,
        }


@dataclass
class ItemRecommendation:
    item: ContentItem
    score: float
    target_difficulty: int
    reason: str

    def to_dict(self) -> dict:
        return {
            **self.item.to_dict(),
            "score": self.score,
            "target_difficulty": self.target_difficulty,
            "reason": self.reason,
        }


def target_difficulty(p_mastery: float) -> int:
    return min(max(math.ceil(p_mastery * 5), 1), 5)


def rank_content_items(
    items: Iterable[ContentItem],
    p_mastery: float,
    recent_item_ids: Iterable[str] = (),
) -> List[ItemRecommendation]:
    """All candidate items for one KC, best first (ties by difficulty, then id)."""
    settings = get_settings()
    target = target_difficulty(p_mastery)
    recent = set(recent_item_ids)

    recs: List[ItemRecommendation] = []
    for item in items:
        score = 10.0
        notes = [f"mastery {p_mastery:.2f} suggests difficulty {target}"]
        if item.item_id in recent:
            score -= settings.RECENT_ITEM_PENALTY
            notes.append("answered recently")
        distance = abs(item.difficulty - target)
        if distance:
            score -= distance * settings.DIFFICULTY_STEP_PENALTY
            notes.append(f"difficulty {item.difficulty} is {distance} step(s) off")
        recs.append(ItemRecommendation(item=item, score=score, target_difficulty=target, reason="; ".join(notes)))

    recs.sort(key=lambda r: (-r.score, r.item.difficulty, r.item.item_id))
    return recs


def recommend_content_item(
    items: Iterable[ContentItem],
    p_mastery: float,
    recent_item_ids: Iterable[str] = (),
) -> Optional[ItemRecommendation]:
    ranked = rank_content_items(items, p_mastery, recent_item_ids)
    return ranked[0] if ranked else None
