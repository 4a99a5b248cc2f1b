"""
Aggregation service for idlsync.

Merges the per-source extractions of a run into one tree keyed by public
name, records collisions, and builds the provenance record from the
winning files.
"""

import logging
from typing import Dict, Iterable, List, Optional

from ..domain.result import (
    AggregationResult,
    Collision,
    CollisionPolicy,
    Contender,
    ProvenanceEntry,
    ProvenanceRecord,
    StaleEntry,
)
from ..domain.source import ExtractedFile, SourceExtraction

logger = logging.getLogger(__name__)


class Aggregator:
    """
    Collision-aware merge of extraction results.

    The winner of a contested name depends only on the inputs: all
    contributions are ordered by (source name, original path) before the
    policy picks the first or the last one.

    Example:
        aggregator = Aggregator(CollisionPolicy.FIRST, publish_directory="idl")
        result = aggregator.aggregate(extractions)
        for collision in result.collisions:
            print(collision.public_name, collision.winner, collision.sources)
    """

    def __init__(
        self,
        policy: CollisionPolicy = CollisionPolicy.FIRST,
        publish_directory: str = "idl"
    ):
        self.policy = policy
        self.publish_directory = publish_directory.strip('/')

    def published_path(self, public_name: str) -> str:
        """Path of a public name relative to the repository root."""
        return f"{self.publish_directory}/{public_name}"

    def aggregate(
        self,
        extractions: Iterable[SourceExtraction],
        stale: Optional[Dict[str, StaleEntry]] = None
    ) -> AggregationResult:
        """
        Merge extractions into an AggregationResult.

        Args:
            extractions: One SourceExtraction per successfully cached source
            stale: Flagged entries for sources that failed this run

        Returns:
            AggregationResult with files, collisions and provenance
        """
        extractions = sorted(extractions, key=lambda e: e.name)

        # Group every contribution by public name
        by_name: Dict[str, List[ExtractedFile]] = {}
        for extraction in extractions:
            for extracted in extraction.files:
                by_name.setdefault(extracted.public_name, []).append(extracted)

        result = AggregationResult()
        for public_name in sorted(by_name):
            contributions = sorted(by_name[public_name], key=ExtractedFile.sort_key)
            winner = self._pick(contributions)
            result.files[public_name] = winner

            if len(contributions) > 1:
                collision = Collision(
                    public_name=public_name,
                    winner=winner.source_name,
                    contenders=[Contender.of(c) for c in contributions],
                )
                result.collisions.append(collision)
                level = logging.INFO if collision.identical else logging.WARNING
                logger.log(
                    level,
                    f"Collision on {public_name}: {', '.join(collision.sources)} "
                    f"(winner: {winner.source_name}{', identical content' if collision.identical else ''})"
                )

        result.provenance = self._provenance(extractions, result.files, stale or {})
        return result

    def _pick(self, contributions: List[ExtractedFile]) -> ExtractedFile:
        if self.policy is CollisionPolicy.LAST:
            return contributions[-1]
        return contributions[0]

    def _provenance(
        self,
        extractions: List[SourceExtraction],
        files: Dict[str, ExtractedFile],
        stale: Dict[str, StaleEntry]
    ) -> ProvenanceRecord:
        """Build the record from winning assignments only."""
        won: Dict[str, List[str]] = {e.name: [] for e in extractions}
        for public_name, extracted in files.items():
            won[extracted.source_name].append(self.published_path(public_name))

        record = ProvenanceRecord()
        for extraction in extractions:
            record.remotes[extraction.name] = ProvenanceEntry(
                repository=extraction.source.repository,
                branch=extraction.source.branch,
                commit=extraction.commit,
                files=sorted(won[extraction.name]),
            )
        for name, entry in stale.items():
            if name not in record.remotes:
                record.stale[name] = entry
        return record
