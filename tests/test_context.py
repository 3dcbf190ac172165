"""Tests for context chunk building, optimisation and quality assessment."""

import asyncio

from index.context import ContextBuilder, estimate_tokens
from index.models import FieldScores, ScoredCandidate

from conftest import BagOfWordsEmbedder, FailingEmbedder, make_candidate


def scored_candidate(**fields):
    candidate = make_candidate(
        "c1", "Alice Example", ["React", "AWS"], 6, salary_expectation=120000, **fields
    )
    return ScoredCandidate(
        candidate=candidate,
        scores=FieldScores(profile=0.6, skills=0.8, experience=0.5, resume=0.4),
        match_score=0.65,
        retrieval_method="vector",
    )


def test_build_produces_typed_chunks():
    chunks = ContextBuilder().build(scored_candidate())

    assert [c.type for c in chunks] == ["profile", "skills", "experience", "resume"]
    assert [c.id for c in chunks] == ["c1-profile", "c1-skills", "c1-experience", "c1-resume"]
    assert all(c.candidate_id == "c1" for c in chunks)

    profile, skills, experience, resume = chunks
    assert "Name: Alice Example" in profile.content
    assert "Current Position: Frontend Developer at Acme" in profile.content
    assert skills.content == "Technical Skills: React, AWS"
    assert skills.relevance_score == 0.8
    assert "Salary Expectation: $120,000" in experience.content
    assert resume.content == "Builds web applications"
    assert resume.metadata.source == "candidate_summary"
    assert profile.metadata.chunk_size == len(profile.content)


def test_build_skips_missing_sections():
    candidate = make_candidate("c2", "Bob Example", [], 2, summary=None, company=None)
    scored = ScoredCandidate(candidate=candidate, match_score=0.3, retrieval_method="keyword")

    chunks = ContextBuilder().build(scored)

    assert [c.type for c in chunks] == ["profile", "experience"]
    assert "at Not specified" in chunks[0].content
    assert "Salary Expectation: Not specified" in chunks[1].content


def test_build_uses_resume_text_without_summary():
    chunks = ContextBuilder().build(
        scored_candidate(summary=None, resume_text="Ten years building React apps")
    )
    assert chunks[-1].metadata.source == "candidate_resume"
    assert chunks[-1].content == "Ten years building React apps"


def test_build_all_keys_by_candidate_id():
    chunks = ContextBuilder().build_all([scored_candidate()])
    assert list(chunks) == ["c1"]
    assert len({c.metadata.chunked_at for c in chunks["c1"]}) == 1


def test_estimate_tokens():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcde") == 2


def test_optimize_context_orders_by_relevance_within_budget():
    builder = ContextBuilder()
    chunks = builder.build(scored_candidate())

    optimized = asyncio.run(
        builder.optimize_context(chunks, "React AWS", BagOfWordsEmbedder(), max_tokens=2000)
    )

    assert optimized[0].type == "skills"
    assert len(optimized) == len(chunks)

    trimmed = asyncio.run(
        builder.optimize_context(chunks, "React AWS", BagOfWordsEmbedder(), max_tokens=10)
    )
    assert [c.type for c in trimmed] == ["skills"]


def test_optimize_context_without_query_embedding_keeps_first_chunks():
    builder = ContextBuilder()
    chunks = builder.build(scored_candidate())

    optimized = asyncio.run(builder.optimize_context(chunks, "React", FailingEmbedder()))

    assert optimized == chunks[:5]


def test_assess_context_quality():
    builder = ContextBuilder()

    complete = builder.assess_context_quality(builder.build(scored_candidate()))
    assert complete["quality"] == "high"
    assert complete["issues"] == []

    empty = builder.assess_context_quality([])
    assert empty["quality"] == "low"
    assert "Missing skills information" in empty["issues"]
