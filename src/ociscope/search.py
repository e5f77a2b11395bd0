"""
Fuzzy search over repository names, tags and images.

Query characters must appear in order in the target but need not be
contiguous (``alp`` matches ``alpine`` and ``my-alpha-prod``). Matches
score higher when characters are consecutive or start a word. A query
with several whitespace-separated words requires every word to match.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence

SCORE_MATCH = 16
BONUS_BOUNDARY = 8
BONUS_CAMEL = 6
BONUS_CONSECUTIVE = 8
PENALTY_GAP = 1

_BOUNDARY_CHARS = "/-_.: @"


class CaseMatching(str, Enum):
    IGNORE = "ignore"
    SMART = "smart"
    RESPECT = "respect"


@dataclass(frozen=True)
class SearchResult:
    value: str
    score: int


def _bonus(target: str, j: int) -> int:
    if j == 0 or target[j - 1] in _BOUNDARY_CHARS:
        return BONUS_BOUNDARY
    if target[j - 1].islower() and target[j].isupper():
        return BONUS_CAMEL
    return 0


def score_match(pattern: str, target: str, case_sensitive: bool = False) -> Optional[int]:
    """
    Score one pattern against one target.

    Returns None when ``pattern`` is not a subsequence of ``target``,
    otherwise the score of the best alignment (at least 1).
    """
    q = pattern if case_sensitive else pattern.lower()
    t = target if case_sensitive else target.lower()
    n = len(t)
    if not q:
        return 0
    if len(q) > n:
        return None

    # prev[j]: best score with the previous pattern char placed at target[j]
    prev: List[Optional[int]] = [None] * n
    for i, qc in enumerate(q):
        cur: List[Optional[int]] = [None] * n
        running: Optional[int] = None
        for j in range(n):
            if i > 0 and j >= 2:
                candidates = [v for v in (running, prev[j - 2]) if v is not None]
                running = max(candidates) - PENALTY_GAP if candidates else None
            if t[j] != qc:
                continue
            base = SCORE_MATCH + _bonus(target, j)
            if i == 0:
                cur[j] = base
                continue
            options = []
            if j >= 1 and prev[j - 1] is not None:
                options.append(prev[j - 1] + base + BONUS_CONSECUTIVE)
            if running is not None:
                options.append(running + base)
            if options:
                cur[j] = max(options)
        prev = cur

    scores = [s for s in prev if s is not None]
    if not scores:
        return None
    return max(1, max(scores))


def fuzzy_search(
    query: str,
    targets: Iterable[str],
    case_matching: CaseMatching = CaseMatching.SMART,
) -> List[SearchResult]:
    """
    Match ``query`` against ``targets``.

    An empty query returns every target with score 0. Results are sorted
    by score (highest first), then alphabetically.
    """
    atoms = query.split()
    if not atoms:
        return [SearchResult(value=t, score=0) for t in targets]

    if case_matching is CaseMatching.RESPECT:
        case_sensitive = True
    elif case_matching is CaseMatching.IGNORE:
        case_sensitive = False
    else:
        case_sensitive = any(c.isupper() for c in query)

    results = []
    for target in targets:
        total = 0
        for atom in atoms:
            score = score_match(atom, target, case_sensitive)
            if score is None:
                break
            total += score
        else:
            results.append(SearchResult(value=target, score=total))

    results.sort(key=lambda r: (-r.score, r.value))
    return results


def search_repositories(query: str, repositories: Sequence[str]) -> List[SearchResult]:
    return fuzzy_search(query, repositories, CaseMatching.SMART)


def search_tags(query: str, tags: Sequence[str]) -> List[SearchResult]:
    return fuzzy_search(query, tags, CaseMatching.SMART)


def search_images(
    query: str,
    repositories: Sequence[str],
    tags_map: Mapping[str, Sequence[str]],
) -> List[SearchResult]:
    """
    Search ``repo:tag`` images.

    With a ``:`` in the query, the part before it is matched against
    repositories and the part after it against each matching repository's
    tags; an image scores the average of both. Without ``:``, every tag of
    a matching repository is returned with the repository's score.
    """
    results: List[SearchResult] = []
    if ":" in query:
        repo_query, tag_query = query.split(":", 1)
        for repo in search_repositories(repo_query, repositories):
            for tag in search_tags(tag_query, tags_map.get(repo.value, ())):
                results.append(SearchResult(
                    value=f"{repo.value}:{tag.value}",
                    score=(repo.score + tag.score) // 2,
                ))
    else:
        for repo in search_repositories(query, repositories):
            for tag in tags_map.get(repo.value, ()):
                results.append(SearchResult(value=f"{repo.value}:{tag}", score=repo.score))

    results.sort(key=lambda r: (-r.score, r.value))
    return results


__all__ = [
    "CaseMatching",
    "SearchResult",
    "score_match",
    "fuzzy_search",
    "search_repositories",
    "search_tags",
    "search_images",
]
