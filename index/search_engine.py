"""
Weaviate-backed candidate store with one named vector per embedding field.
"""

import asyncio
import logging
import os
from functools import partial
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import weaviate
import weaviate.classes as wvc
from weaviate.classes.config import (
    Configure,
    DataType,
    Property,
    Tokenization,
    VectorDistances,
)
from weaviate.util import generate_uuid5

from .filters import (
    AllOf,
    AnyOf,
    ExperienceBetween,
    HasAnySkill,
    Predicate,
    RemotePreference,
    TextContains,
    build_keyword_filter,
    combine_all,
)
from .models import EMBEDDING_FIELDS, CandidateRecord
from .store import CandidateStore, has_required_embeddings

logger = logging.getLogger(__name__)

RETURN_PROPERTIES = [
    "candidate_id",
    "name",
    "email",
    "phone",
    "title",
    "company",
    "location",
    "remote_preference",
    "years_experience",
    "salary_expectation",
    "skills",
    "summary",
    "resume_text",
]

# Lowercased whole-value copies that TextContains filters compile against.
MATCHABLE_FIELDS = ("title", "summary", "location")


def matchable_property(field: str) -> str:
    return f"{field}_match"


def compile_filter(predicate: Optional[Predicate]) -> Optional[wvc.query.Filter]:
    """
    Compile a predicate tree into a Weaviate filter.

    Args:
        predicate: Predicate tree from ``index.filters``

    Returns:
        Equivalent Weaviate filter, or None for no filtering

    Raises:
        TypeError: If the tree contains an unknown predicate type
    """
    if predicate is None:
        return None

    if isinstance(predicate, AllOf):
        return wvc.query.Filter.all_of(
            [compile_filter(p) for p in predicate.predicates]
        )

    if isinstance(predicate, AnyOf):
        return wvc.query.Filter.any_of(
            [compile_filter(p) for p in predicate.predicates]
        )

    if isinstance(predicate, ExperienceBetween):
        years = wvc.query.Filter.by_property("years_experience")
        return years.greater_or_equal(predicate.minimum) & years.less_or_equal(
            predicate.maximum
        )

    if isinstance(predicate, TextContains):
        target = wvc.query.Filter.by_property(matchable_property(predicate.field))
        return target.like(f"*{predicate.value.lower()}*")

    if isinstance(predicate, RemotePreference):
        return wvc.query.Filter.by_property("remote_preference").equal(
            predicate.value
        )

    if isinstance(predicate, HasAnySkill):
        return wvc.query.Filter.by_property("skills_normalized").contains_any(
            [skill.lower() for skill in predicate.skills]
        )

    raise TypeError(f"Cannot compile predicate {type(predicate).__name__}")


class WeaviateCandidateStore(CandidateStore):
    """
    Candidate store on a Weaviate collection.

    Each embedding field (profile, skills, experience, resume) is a named
    vector with an HNSW cosine index, so nearest-neighbour lookups can
    target one field at a time.
    """

    def __init__(
        self,
        weaviate_url: Optional[str] = None,
        collection_name: str = "Candidate",
    ):
        """
        Initialize the Weaviate candidate store.

        Args:
            weaviate_url: URL of the Weaviate instance
            collection_name: Name of the candidates collection
        """
        self.weaviate_url = weaviate_url or os.getenv(
            "WEAVIATE_URL", "http://localhost:8080"
        )
        self.collection_name = collection_name
        self.client: Optional[weaviate.WeaviateClient] = None
        self.vector_dimension = int(os.getenv("VECTOR_DIMENSION", "384"))

    async def initialize(self) -> None:
        """
        Connect to Weaviate and create the collection if it is missing.

        Raises:
            RuntimeError: If initialization fails
        """
        try:
            logger.info(f"Connecting to Weaviate at {self.weaviate_url}")

            url_parts = self.weaviate_url.replace("http://", "").replace("https://", "")
            if ":" in url_parts:
                host, port = url_parts.split(":")
                port = int(port)
            else:
                host = url_parts
                port = 8080

            self.client = weaviate.connect_to_local(
                host=host,
                port=port,
                additional_config=weaviate.classes.init.AdditionalConfig(
                    timeout=weaviate.classes.init.Timeout(init=30, query=30, insert=60)
                ),
            )

            if not self.client.is_ready():
                raise RuntimeError("Weaviate is not ready")

            self._ensure_schema()

            logger.info(f"Weaviate candidate store ready ({self.collection_name})")

        except Exception as e:
            raise RuntimeError(f"Weaviate initialization failed: {e}")

    def _ensure_schema(self) -> None:
        collections = self.client.collections
        if collections.exists(self.collection_name):
            return

        properties = [
            Property(name="candidate_id", data_type=DataType.TEXT),
            Property(name="name", data_type=DataType.TEXT),
            Property(name="email", data_type=DataType.TEXT),
            Property(name="phone", data_type=DataType.TEXT),
            Property(name="title", data_type=DataType.TEXT),
            Property(name="company", data_type=DataType.TEXT),
            Property(name="location", data_type=DataType.TEXT),
            Property(name="remote_preference", data_type=DataType.TEXT),
            Property(name="years_experience", data_type=DataType.NUMBER),
            Property(name="salary_expectation", data_type=DataType.INT),
            Property(name="skills", data_type=DataType.TEXT_ARRAY),
            Property(
                name="skills_normalized",
                data_type=DataType.TEXT_ARRAY,
                tokenization=Tokenization.FIELD,
            ),
            Property(name="summary", data_type=DataType.TEXT),
            Property(name="resume_text", data_type=DataType.TEXT),
        ]
        properties.extend(
            Property(
                name=matchable_property(field),
                data_type=DataType.TEXT,
                tokenization=Tokenization.FIELD,
            )
            for field in MATCHABLE_FIELDS
        )

        collections.create(
            name=self.collection_name,
            properties=properties,
            vector_config=[
                Configure.Vectors.self_provided(
                    name=field,
                    vector_index_config=Configure.VectorIndex.hnsw(
                        distance_metric=VectorDistances.COSINE
                    ),
                )
                for field in EMBEDDING_FIELDS
            ],
            inverted_index_config=Configure.inverted_index(),
        )
        logger.info(
            f"Created {self.collection_name} collection with named vectors "
            f"{', '.join(EMBEDDING_FIELDS)}"
        )

    def _collection(self):
        if not self.client:
            raise RuntimeError("Weaviate client not initialized")
        return self.client.collections.get(self.collection_name)

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    async def index_candidates(self, records: List[CandidateRecord]) -> int:
        """
        Upsert candidates with their named vectors.

        Args:
            records: Candidate records carrying embeddings

        Returns:
            Number of candidates sent to Weaviate
        """
        collection = self._collection()
        logger.info(f"Indexing {len(records)} candidates in Weaviate")

        def _insert() -> int:
            sent = 0
            with collection.batch.fixed_size(batch_size=100) as batch:
                for record in records:
                    vectors = {
                        field: record.embeddings[field]
                        for field in EMBEDDING_FIELDS
                        if record.has_embedding(field)
                    }
                    bad = [
                        field
                        for field, vector in vectors.items()
                        if len(vector) != self.vector_dimension
                    ]
                    if bad:
                        logger.warning(
                            f"Embedding dimension mismatch for candidate "
                            f"{record.id} on {bad}: expected {self.vector_dimension}"
                        )
                        continue

                    batch.add_object(
                        properties=self._to_properties(record),
                        vector=vectors,
                        uuid=generate_uuid5(record.id),
                    )
                    sent += 1
            return sent

        sent = await self._run(_insert)

        failed = collection.batch.failed_objects
        if failed:
            logger.error(f"Candidate indexing errors: {len(failed)}")
            for error in failed:
                logger.error(f"Candidate indexing error: {error.message}")
        else:
            logger.info(f"Successfully indexed {sent} candidates")

        return sent - len(failed)

    async def query_by_vector_similarity(
        self,
        field: str,
        query_vector: np.ndarray,
        filters: Optional[Predicate],
        limit: int,
    ) -> List[Tuple[CandidateRecord, float]]:
        if field not in EMBEDDING_FIELDS:
            raise ValueError(f"Unknown embedding field: {field}")

        collection = self._collection()
        response = await self._run(
            collection.query.near_vector,
            near_vector=np.asarray(query_vector, dtype=np.float32).tolist(),
            target_vector=field,
            limit=limit,
            filters=compile_filter(filters),
            return_properties=RETURN_PROPERTIES,
            return_metadata=wvc.query.MetadataQuery(distance=True),
            include_vector=True,
        )

        results = []
        for obj in response.objects:
            record = self._parse_object(obj)
            if record is None:
                continue
            if filters is not None and not filters.matches(record):
                continue
            similarity = 1.0 - float(obj.metadata.distance or 0.0)
            results.append((record, similarity))

        logger.info(f"Vector query on {field} returned {len(results)} candidates")
        return results

    async def query_by_keyword(
        self,
        tokens: Sequence[str],
        skill_tokens: Sequence[str],
        filters: Optional[Predicate],
        limit: int,
    ) -> List[CandidateRecord]:
        keyword_filter = build_keyword_filter(tokens, skill_tokens)
        if keyword_filter is None:
            return []

        predicate = combine_all([keyword_filter, filters])
        collection = self._collection()
        response = await self._run(
            collection.query.fetch_objects,
            filters=compile_filter(predicate),
            limit=limit,
            return_properties=RETURN_PROPERTIES,
            include_vector=True,
        )

        records = []
        for obj in response.objects:
            record = self._parse_object(obj)
            if record is not None and predicate.matches(record):
                records.append(record)

        logger.info(f"Keyword query returned {len(records)} candidates")
        return records

    async def stats(self) -> Dict[str, int]:
        collection = self._collection()

        def _count() -> Dict[str, int]:
            total = 0
            with_embeddings = 0
            for obj in collection.iterator(
                include_vector=True, return_properties=["candidate_id"]
            ):
                total += 1
                vectors = obj.vector or {}
                if all(vectors.get(field) for field in EMBEDDING_FIELDS[:3]):
                    with_embeddings += 1
            return {
                "total_candidates": total,
                "candidates_with_embeddings": with_embeddings,
            }

        return await self._run(_count)

    def _to_properties(self, record: CandidateRecord) -> Dict:
        return {
            "candidate_id": record.id,
            "name": record.name,
            "email": record.email,
            "phone": record.phone or "",
            "title": record.title or "",
            "company": record.company or "",
            "location": record.location or "",
            "remote_preference": (record.remote_preference or "").lower(),
            "years_experience": record.years_experience,
            "salary_expectation": record.salary_expectation or 0,
            "skills": record.skills,
            "skills_normalized": record.normalized_skills,
            "summary": record.summary or "",
            "resume_text": record.resume_text or "",
            **{
                matchable_property(field): (getattr(record, field) or "").lower()
                for field in MATCHABLE_FIELDS
            },
        }

    def _parse_object(self, obj) -> Optional[CandidateRecord]:
        """Parse a Weaviate object into a CandidateRecord; None if malformed."""
        props = obj.properties
        try:
            vectors = obj.vector or {}
            record = CandidateRecord(
                id=props["candidate_id"],
                name=props["name"],
                email=props.get("email") or "",
                phone=props.get("phone") or None,
                title=props.get("title") or None,
                company=props.get("company") or None,
                location=props.get("location") or None,
                remote_preference=props.get("remote_preference") or None,
                years_experience=props.get("years_experience") or 0.0,
                salary_expectation=props.get("salary_expectation") or None,
                skills=props.get("skills") or [],
                summary=props.get("summary") or None,
                resume_text=props.get("resume_text") or None,
                embeddings={
                    field: list(vectors[field])
                    for field in EMBEDDING_FIELDS
                    if vectors.get(field)
                },
            )
        except Exception as e:
            logger.error(f"Error processing candidate result: {e}")
            return None

        if not has_required_embeddings(record):
            logger.debug(f"Candidate {record.id} is missing required embeddings")
        return record

    def close(self) -> None:
        """Close the Weaviate client connection."""
        if self.client:
            self.client.close()
            logger.info("Weaviate candidate store connection closed")
