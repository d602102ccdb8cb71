"""
Entity Matcher.

Ranks canonical candidates against a raw text fragment.

CONTRACT:
- Exact case-insensitive match on name or alias -> confidence 1.0
- Non-exact matches never reach 1.0 (capped at NON_EXACT_CAP)
- Nothing above the per-kind floor -> empty list ("needs creation"),
  never a low-confidence guess
- Pure and deterministic: same input + same pool -> same ranking
"""

import re
from collections.abc import Iterable, Sequence

from rapidfuzz import fuzz

from cardledger.config import Settings, settings
from cardledger.models.resolution import Candidate, EntityKind, EntityMatch

NON_EXACT_CAP = 0.99

_QUOTES = re.compile(r"[‘’‛`´]")
_WHITESPACE = re.compile(r"\s+")


def normalize_string(value: str | None) -> str:
    """Lowercase, trim, unify apostrophes and collapse whitespace."""
    if not value:
        return ""
    value = _QUOTES.sub("'", value.lower().strip())
    return _WHITESPACE.sub(" ", value)


def similarity(a: str | None, b: str | None) -> float:
    """
    Similarity between two strings in [0.0, 1.0].

    1.0 only for strings equal after normalization. Otherwise the best of
    character-level ratio, word-order-insensitive ratio, and containment
    (share of the longer string covered by the shorter one), capped
    below 1.0.
    """
    left = normalize_string(a)
    right = normalize_string(b)
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0

    scores = [
        fuzz.ratio(left, right) / 100.0,
        fuzz.token_sort_ratio(left, right) / 100.0,
    ]
    shorter, longer = sorted((left, right), key=len)
    if shorter in longer:
        scores.append(len(shorter) / len(longer))

    return min(max(scores), NON_EXACT_CAP)


class EntityMatcher:
    """
    Fuzzy/exact name matcher shared by every resolver.

    Floors are looked up per EntityKind from settings so that colors
    (short, loosely typed) can match more leniently than sets.
    """

    def __init__(self, config: Settings | None = None) -> None:
        config = config or settings
        self._floors: dict[EntityKind, float] = {
            EntityKind.SET: config.set_match_floor,
            EntityKind.SERIES: config.series_match_floor,
            EntityKind.COLOR: config.color_match_floor,
            EntityKind.TEAM: config.team_match_floor,
            EntityKind.PLAYER: config.player_match_floor,
        }

    def floor(self, kind: EntityKind) -> float:
        return self._floors[kind]

    def score(self, raw_text: str, candidate: Candidate) -> float:
        """Best similarity of raw_text against the candidate's name and aliases."""
        return max(similarity(raw_text, name) for name in _names(candidate))

    def match(
        self,
        raw_text: str | None,
        candidates: Iterable[Candidate],
        kind: EntityKind,
    ) -> list[EntityMatch]:
        """
        Rank candidates for raw_text.

        Args:
            raw_text: Fragment exactly as the contributor typed it
            candidates: Pool of canonical entities to compare against
            kind: Entity kind, selects the similarity floor

        Returns:
            Matches at or above the floor, best first. Ties are broken by
            name then id so rankings are reproducible.
        """
        if not normalize_string(raw_text):
            return []

        floor = self._floors[kind]
        matches: list[EntityMatch] = []
        seen: set[int] = set()

        for candidate in candidates:
            if candidate.id in seen:
                continue
            seen.add(candidate.id)

            confidence = self.score(raw_text or "", candidate)
            if confidence >= floor:
                matches.append(
                    EntityMatch(
                        candidate_id=candidate.id,
                        name=candidate.name,
                        confidence=round(confidence, 4),
                    )
                )

        matches.sort(key=lambda m: (-m.confidence, m.name.lower(), m.candidate_id))
        return matches

    def best(
        self,
        raw_text: str | None,
        candidates: Sequence[Candidate],
        kind: EntityKind,
    ) -> EntityMatch | None:
        """Top match, or None when nothing clears the floor."""
        matches = self.match(raw_text, candidates, kind)
        return matches[0] if matches else None


def is_ambiguous(matches: Sequence[EntityMatch]) -> bool:
    """True when the two best matches tie on confidence but name different entities."""
    return (
        len(matches) >= 2
        and matches[0].confidence == matches[1].confidence
        and matches[0].candidate_id != matches[1].candidate_id
    )


def _names(candidate: Candidate) -> list[str]:
    return [candidate.name, *(alias for alias in candidate.aliases if alias)]
