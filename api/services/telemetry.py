"""
Append-only telemetry stores for search metrics and user feedback.

Metrics are upserted by query id (last write wins) and feedback is merged
into the matching metrics record. Feedback for a query id that was never
recorded is ignored.
"""

import asyncio
import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from index.errors import TelemetryWriteError
from index.models import EvaluationMetrics, SearchMetrics, UserFeedback

logger = logging.getLogger(__name__)


class TelemetryStore(ABC):
    """Durable store for per-query search metrics."""

    @abstractmethod
    async def append(self, metrics: SearchMetrics) -> None:
        """
        Record metrics for a query, replacing an earlier record for the same id.

        Raises:
            TelemetryWriteError: If the record cannot be persisted
        """

    @abstractmethod
    async def attach_feedback(
        self,
        query_id: str,
        feedback: UserFeedback,
        evaluation: Optional[EvaluationMetrics] = None,
    ) -> bool:
        """
        Merge feedback into the metrics record of a query.

        Args:
            query_id: Query the feedback refers to
            feedback: User feedback
            evaluation: Metrics recomputed from the feedback, replacing the
                stored ones when given

        Returns:
            True if a record was found and updated

        Raises:
            TelemetryWriteError: If the feedback cannot be persisted
        """

    @abstractmethod
    async def get(self, query_id: str) -> Optional[SearchMetrics]:
        """The metrics record of a query, or None if it was never recorded."""

    @abstractmethod
    async def records(self, since: Optional[datetime] = None) -> List[SearchMetrics]:
        """Stored metrics, optionally only those at or after ``since``."""


def _filter_since(
    records: List[SearchMetrics], since: Optional[datetime]
) -> List[SearchMetrics]:
    if since is None:
        return records
    return [r for r in records if r.timestamp >= since]


def _with_feedback(
    record: SearchMetrics,
    feedback: UserFeedback,
    evaluation: Optional[EvaluationMetrics],
) -> SearchMetrics:
    update = {"user_feedback": feedback}
    if evaluation is not None:
        update["evaluation_metrics"] = evaluation
    return record.model_copy(update=update)


class InMemoryTelemetryStore(TelemetryStore):
    """Telemetry kept in process memory."""

    def __init__(self):
        self._records: Dict[str, SearchMetrics] = {}

    async def append(self, metrics: SearchMetrics) -> None:
        existing = self._records.get(metrics.query_id)
        if existing and existing.user_feedback and not metrics.user_feedback:
            metrics = metrics.model_copy(update={"user_feedback": existing.user_feedback})
        self._records[metrics.query_id] = metrics

    async def attach_feedback(
        self,
        query_id: str,
        feedback: UserFeedback,
        evaluation: Optional[EvaluationMetrics] = None,
    ) -> bool:
        existing = self._records.get(query_id)
        if existing is None:
            return False
        self._records[query_id] = _with_feedback(existing, feedback, evaluation)
        return True

    async def get(self, query_id: str) -> Optional[SearchMetrics]:
        return self._records.get(query_id)

    async def records(self, since: Optional[datetime] = None) -> List[SearchMetrics]:
        return _filter_since(list(self._records.values()), since)


class JsonlTelemetryStore(TelemetryStore):
    """
    Telemetry in an append-only JSON Lines file.

    Every write appends one line; metrics and feedback are merged by query id
    when the file is read back.
    """

    def __init__(self, path: str, create_dirs: bool = True):
        self.path = Path(path)
        self._lock = threading.Lock()
        if create_dirs:
            self.path.parent.mkdir(parents=True, exist_ok=True)

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    def _write_line(self, entry: Dict) -> None:
        line = json.dumps(entry, default=str)
        try:
            with self._lock, open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise TelemetryWriteError(f"Cannot write telemetry to {self.path}: {e}") from e

    def _load(self) -> Dict[str, SearchMetrics]:
        merged: Dict[str, SearchMetrics] = {}
        if not self.path.exists():
            return merged

        try:
            with self._lock, open(self.path, "r", encoding="utf-8") as f:
                lines = f.readlines()
        except OSError as e:
            raise TelemetryWriteError(f"Cannot read telemetry from {self.path}: {e}") from e

        for number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
                if entry["kind"] == "metrics":
                    metrics = SearchMetrics.model_validate(entry["record"])
                    existing = merged.get(metrics.query_id)
                    if existing and existing.user_feedback and not metrics.user_feedback:
                        metrics = metrics.model_copy(
                            update={"user_feedback": existing.user_feedback}
                        )
                    merged[metrics.query_id] = metrics
                elif entry["kind"] == "feedback":
                    existing = merged.get(entry["query_id"])
                    if existing is not None:
                        evaluation = entry.get("evaluation")
                        merged[existing.query_id] = _with_feedback(
                            existing,
                            UserFeedback.model_validate(entry["feedback"]),
                            EvaluationMetrics.model_validate(evaluation)
                            if evaluation
                            else None,
                        )
            except (ValueError, KeyError) as e:
                logger.warning(f"Skipping malformed telemetry line {number}: {e}")

        return merged

    async def append(self, metrics: SearchMetrics) -> None:
        await self._run(
            self._write_line,
            {"kind": "metrics", "record": metrics.model_dump(mode="json")},
        )

    async def attach_feedback(
        self,
        query_id: str,
        feedback: UserFeedback,
        evaluation: Optional[EvaluationMetrics] = None,
    ) -> bool:
        known = await self._run(self._load)
        if query_id not in known:
            return False

        entry = {
            "kind": "feedback",
            "query_id": query_id,
            "feedback": feedback.model_dump(mode="json"),
        }
        if evaluation is not None:
            entry["evaluation"] = evaluation.model_dump(mode="json")
        await self._run(self._write_line, entry)
        return True

    async def get(self, query_id: str) -> Optional[SearchMetrics]:
        merged = await self._run(self._load)
        return merged.get(query_id)

    async def records(self, since: Optional[datetime] = None) -> List[SearchMetrics]:
        merged = await self._run(self._load)
        return _filter_since(list(merged.values()), since)
