"""
Deterministic merge of chunk outcomes and the reduce result into an Article.
"""
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from core.models import (
    Article, ChunkOutcome, Dialog, Keyword, MeetingMeta, MiddleSummary, Participant, ReduceResult, Term,
)

PRIORITY_SCORE = {'high': 3, 'medium': 2, 'low': 1}
HIGH_RANKS = 8
MEDIUM_RANKS = 20

_WHITESPACE = re.compile(r'\s+')


@dataclass
class ChunkAggregate:
    dialogs: List[Dialog] = field(default_factory=list)
    middle_summaries: List[MiddleSummary] = field(default_factory=list)
    participants: Dict[str, str] = field(default_factory=dict)
    terms: Dict[str, str] = field(default_factory=dict)
    keyword_scores: Dict[str, int] = field(default_factory=dict)
    category_counts: Counter = field(default_factory=Counter)


def collect_chunks(outcomes: Sequence[ChunkOutcome]) -> ChunkAggregate:
    """Fold chunk outcomes in structural order, never completion order."""
    agg = ChunkAggregate()
    for outcome in sorted(outcomes, key=lambda o: o.index):
        part = outcome.result
        agg.dialogs.extend(outcome.dialogs)
        agg.middle_summaries.append(part.middle_summary)

        for p in part.participants:
            key = _WHITESPACE.sub('', p.name)
            if key and key not in agg.participants:
                agg.participants[key] = p.summary
        for t in part.terms:
            if t.term not in agg.terms:
                agg.terms[t.term] = t.definition
        for k in part.keywords:
            agg.keyword_scores[k.keyword] = agg.keyword_scores.get(k.keyword, 0) + PRIORITY_SCORE[k.priority]

        agg.category_counts.update(c.strip() for c in part.categories if c and c.strip())
    return agg


def top_categories(counts: Counter, n: int) -> List[str]:
    """Top-n by count; ties broken lexicographically."""
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [name for name, _ in ranked[:n]]


def rank_keywords(scores: Dict[str, int]) -> List[Keyword]:
    ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))
    keywords = []
    for rank, (keyword, _) in enumerate(ranked):
        priority = 'high' if rank < HIGH_RANKS else 'medium' if rank < MEDIUM_RANKS else 'low'
        keywords.append(Keyword(keyword=keyword, priority=priority))
    return keywords


def fallback_title(meta: MeetingMeta) -> str:
    return f"{meta.name_of_meeting}（{meta.date}）"


def build_article(meta: MeetingMeta, agg: ChunkAggregate, reduced: ReduceResult,
                  category_top_n: int = 2) -> Article:
    categories = top_categories(agg.category_counts, category_top_n)
    keywords = list(reduced.keywords) if reduced.keywords else rank_keywords(agg.keyword_scores)

    return Article(
        **meta.model_dump(),
        title=reduced.title or fallback_title(meta),
        description=reduced.description or "",
        categories=categories,
        summary=reduced.summary,
        soft_summary=reduced.soft_summary,
        middle_summary=agg.middle_summaries,
        dialogs=agg.dialogs,
        participants=[Participant(name=n, summary=s) for n, s in agg.participants.items()],
        keywords=keywords,
        terms=[Term(term=t, definition=d) for t, d in agg.terms.items()],
    )
