"""
Candidate filter predicates.

Filters are composed as a tree of small typed predicate objects. Each
predicate can evaluate itself against a CandidateRecord, which is what the
in-memory store uses; other stores compile the tree once into their own
query language (see ``index.search_engine``).
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from .models import CandidateRecord, SearchQuery

EXPERIENCE_RANGES = {
    "junior": (0, 2),
    "entry-level": (0, 2),
    "mid-level": (2, 5),
    "intermediate": (2, 5),
    "senior": (5, 10),
    "lead": (8, 20),
    "principal": (8, 20),
    "staff": (8, 20),
    "executive": (10, 30),
    "director": (10, 30),
}


class Predicate:
    """Base class for filter predicates."""

    def matches(self, record: CandidateRecord) -> bool:
        raise NotImplementedError

    def __and__(self, other: "Predicate") -> "Predicate":
        return AllOf((self, other))

    def __or__(self, other: "Predicate") -> "Predicate":
        return AnyOf((self, other))


@dataclass(frozen=True)
class AllOf(Predicate):
    predicates: Tuple[Predicate, ...]

    def matches(self, record: CandidateRecord) -> bool:
        return all(p.matches(record) for p in self.predicates)


@dataclass(frozen=True)
class AnyOf(Predicate):
    predicates: Tuple[Predicate, ...]

    def matches(self, record: CandidateRecord) -> bool:
        return any(p.matches(record) for p in self.predicates)


@dataclass(frozen=True)
class ExperienceBetween(Predicate):
    minimum: float
    maximum: float

    def matches(self, record: CandidateRecord) -> bool:
        return self.minimum <= record.years_experience <= self.maximum


@dataclass(frozen=True)
class TextContains(Predicate):
    """Case-insensitive substring match on a free-text field."""

    field: str
    value: str

    def matches(self, record: CandidateRecord) -> bool:
        text = getattr(record, self.field, None) or ""
        return self.value.lower() in text.lower()


@dataclass(frozen=True)
class RemotePreference(Predicate):
    value: str = "remote"

    def matches(self, record: CandidateRecord) -> bool:
        return (record.remote_preference or "").lower() == self.value


@dataclass(frozen=True)
class HasAnySkill(Predicate):
    """Exact, case-insensitive membership of any skill in the skill set."""

    skills: Tuple[str, ...]

    def matches(self, record: CandidateRecord) -> bool:
        wanted = {skill.lower() for skill in self.skills}
        return any(skill in wanted for skill in record.normalized_skills)


def combine_all(predicates: Iterable[Optional[Predicate]]) -> Optional[Predicate]:
    """AND together the non-empty predicates; None when there are none."""
    parts = tuple(p for p in predicates if p is not None)
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return AllOf(parts)


def combine_any(predicates: Iterable[Optional[Predicate]]) -> Optional[Predicate]:
    """OR together the non-empty predicates; None when there are none."""
    parts = tuple(p for p in predicates if p is not None)
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return AnyOf(parts)


def experience_range(experience_level: str) -> Optional[Tuple[int, int]]:
    """Map an experience level name to a (min, max) years range."""
    return EXPERIENCE_RANGES.get(experience_level.strip().lower())


def build_candidate_filter(query: SearchQuery) -> Optional[Predicate]:
    """
    Build the filter predicate for a search query.

    Args:
        query: Validated search query

    Returns:
        Predicate tree, or None when the query carries no filters
    """
    conditions = []

    if query.experience_level:
        bounds = experience_range(query.experience_level)
        if bounds:
            conditions.append(ExperienceBetween(*bounds))

    if query.location and query.location.strip():
        location_filter = TextContains("location", query.location.strip())
        if query.remote is False:
            conditions.append(location_filter)
        else:
            conditions.append(location_filter | RemotePreference())
    elif query.remote:
        conditions.append(RemotePreference())

    if query.required_skills:
        skills = tuple(s.strip() for s in query.required_skills if s.strip())
        if skills:
            conditions.append(HasAnySkill(skills))

    return combine_all(conditions)


def build_keyword_filter(
    tokens: Iterable[str], skill_tokens: Iterable[str]
) -> Optional[Predicate]:
    """OR of token matches on title/summary and skill-set membership."""
    conditions = []
    for token in tokens:
        conditions.append(TextContains("title", token))
        conditions.append(TextContains("summary", token))

    skill_tokens = tuple(skill_tokens)
    if skill_tokens:
        conditions.append(HasAnySkill(skill_tokens))

    return combine_any(conditions)
