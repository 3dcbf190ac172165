"""
Keyword fallback search.

Extracts informative tokens and recognised technology terms from the job
description and matches them against candidate titles, summaries and skill
sets. Scores are heuristic and not bounded to [0, 1]; the raw value is kept
as the ``keyword`` sub-score and only a clamped copy is used as the match
score.
"""

import logging
import re
from typing import List, Optional, Tuple

from .filters import build_candidate_filter
from .models import CandidateRecord, FieldScores, ScoredCandidate, SearchQuery
from .store import CandidateStore

logger = logging.getLogger(__name__)

MAX_TOKENS = 10

TITLE_MATCH_WEIGHT = 0.3
SUMMARY_MATCH_WEIGHT = 0.2
SKILL_MATCH_WEIGHT = 0.4

STOPWORDS = frozenset(
    """
    a about above after all also an and any are as at be been being both but by
    can could did do does doing for from had has have having he her here hers
    him his how i if in into is it its itself just looking may me more most must
    my need needs not of off on once only or other our ours out over own per
    role same seeking she should so some strong such than that the their them
    then there these they this those through to too under until up very want
    was we well were what when where which while who whom why will with within
    would you your yours join team work working plus preferred ideal candidate
    position company opportunity responsibilities required requirements
    """.split()
)

TECH_VOCABULARY = (
    "javascript", "typescript", "python", "java", "kotlin", "swift", "golang",
    "rust", "ruby", "php", "scala", "c++", "c#", ".net", "react", "react native",
    "angular", "vue", "svelte", "next.js", "node.js", "node", "express",
    "django", "flask", "fastapi", "spring", "spring boot", "rails", "graphql",
    "rest", "sql", "postgresql", "mysql", "mongodb", "redis", "elasticsearch",
    "kafka", "rabbitmq", "aws", "azure", "gcp", "docker", "kubernetes",
    "terraform", "ansible", "jenkins", "ci/cd", "linux", "git", "html", "css",
    "sass", "tailwind", "redux", "webpack", "pandas", "numpy", "pytorch",
    "tensorflow", "scikit-learn", "spark", "hadoop", "airflow", "snowflake",
    "tableau", "machine learning", "deep learning", "nlp", "computer vision",
    "data science", "microservices", "devops", "figma", "ios", "android",
)

_TOKEN_PATTERN = re.compile(r"[a-z0-9][a-z0-9+#./-]*")
_VOCABULARY_PATTERNS = [
    (term, re.compile(r"(?<![\w+#.])" + re.escape(term) + r"(?![\w+#])"))
    for term in TECH_VOCABULARY
]


def extract_keywords(text: str) -> List[str]:
    """
    Informative tokens of a query: stopword-filtered, longer than two
    characters, de-duplicated in order of appearance, at most ten.
    """
    tokens = []
    for raw in _TOKEN_PATTERN.findall(text.lower()):
        token = raw.rstrip(".-/")
        if len(token) <= 2 or token in STOPWORDS or token in tokens:
            continue
        tokens.append(token)
        if len(tokens) == MAX_TOKENS:
            break
    return tokens


def extract_skill_tokens(text: str) -> List[str]:
    """Technology terms from the curated vocabulary found in the text."""
    lowered = text.lower()
    return [term for term, pattern in _VOCABULARY_PATTERNS if pattern.search(lowered)]


def keyword_score(
    record: CandidateRecord, tokens: List[str], skill_tokens: List[str]
) -> Tuple[float, int]:
    """
    Heuristic keyword score for one candidate.

    Returns:
        (score, number of distinct matches)
    """
    title = (record.title or "").lower()
    summary = (record.summary or "").lower()
    skills = set(record.normalized_skills)

    score = 0.0
    matches = 0
    if any(token in title for token in tokens):
        score += TITLE_MATCH_WEIGHT
        matches += 1
    if any(token in summary for token in tokens):
        score += SUMMARY_MATCH_WEIGHT
        matches += 1
    for skill in skill_tokens:
        if skill in skills:
            score += SKILL_MATCH_WEIGHT
            matches += 1

    return score, matches


class KeywordSearchEngine:
    """Token and skill matching against candidate text fields."""

    method = "keyword"

    def __init__(self, store: CandidateStore, prefetch_factor: int = 5):
        self.store = store
        # matches are ranked here, so fetch more than the caller keeps
        self.prefetch_factor = prefetch_factor

    async def search(
        self, query: SearchQuery, limit: Optional[int] = None
    ) -> List[ScoredCandidate]:
        """
        Search candidates by keyword and skill-token matches.

        Args:
            query: Validated search query
            limit: Number of results to return (defaults to query.max_results)

        Returns:
            Candidates ordered by keyword score, ties by id ascending; empty
            when nothing could be extracted or nothing matched
        """
        limit = limit or query.max_results
        tokens = extract_keywords(query.job_description)
        skill_tokens = extract_skill_tokens(query.job_description)

        if not tokens and not skill_tokens:
            logger.info("No keywords extracted from query, skipping keyword search")
            return []

        logger.info(f"Keyword search with tokens={tokens}, skills={skill_tokens}")

        records = await self.store.query_by_keyword(
            tokens,
            skill_tokens,
            build_candidate_filter(query),
            limit * self.prefetch_factor,
        )

        results = []
        for record in records:
            score, matches = keyword_score(record, tokens, skill_tokens)
            if matches == 0:
                continue
            results.append(
                ScoredCandidate(
                    candidate=record,
                    scores=FieldScores(keyword=score),
                    match_score=min(score, 1.0),
                    retrieval_method="keyword",
                )
            )

        results.sort(key=lambda c: (-c.scores.keyword, c.candidate.id))
        logger.info(f"Keyword search matched {len(results)} candidates")
        return results[:limit]
