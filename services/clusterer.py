"""Greedy duplicate clustering over a folder's entities.

Algorithm (single pass, deterministic by input order):
1. Walk entities in order, skipping any already absorbed into a cluster.
2. The current entity anchors a new cluster.
3. Every later unvisited entity of the same type whose raw match score
   against the anchor reaches ``min_score`` joins the cluster.
4. Clusters with fewer than two members are discarded; the reported score is
   the average of all pairwise raw scores inside the cluster.
5. Clusters are returned by descending score.

Known limitation: clustering is anchor-based and NOT transitive. Members are
only ever compared with their anchor, so two entities that match each other
strongly but match no shared anchor end up in different clusters (or none).
Downstream suggestion flows consume clusters as review prompts, so this is
kept as-is rather than replaced with a union-find closure.
"""

import math
from itertools import combinations
from typing import Any, Sequence

from models.schemas import ClusterMember, DuplicateCluster, EntitySnapshot
from services.normalizer import extract_match_keys
from services.similarity import raw_match_score
from utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MIN_SCORE = 60


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _average_pairwise_score(signatures: Sequence[dict[str, Any]]) -> int:
    pairs = list(combinations(signatures, 2))
    if not pairs:
        return 0
    total = sum(raw_match_score(a, b) for a, b in pairs)
    return _round_half_up(total / len(pairs))


class DuplicateClusterer:
    """Groups same-type entities into likely-duplicate clusters."""

    def __init__(self, min_score: int = DEFAULT_MIN_SCORE):
        self.min_score = min_score

    def cluster(self, entities: Sequence[EntitySnapshot]) -> list[DuplicateCluster]:
        signatures = [extract_match_keys(e.attributes) for e in entities]
        visited: set[int] = set()
        clusters: list[DuplicateCluster] = []

        for i, anchor in enumerate(entities):
            if i in visited:
                continue
            member_idx = [i]

            for j in range(i + 1, len(entities)):
                if j in visited or entities[j].type != anchor.type:
                    continue
                if raw_match_score(signatures[i], signatures[j]) >= self.min_score:
                    member_idx.append(j)
                    visited.add(j)

            if len(member_idx) < 2:
                continue

            clusters.append(
                DuplicateCluster(
                    members=[
                        ClusterMember(
                            id=entities[k].id,
                            name=entities[k].name,
                            type=entities[k].type,
                        )
                        for k in member_idx
                    ],
                    score=_average_pairwise_score([signatures[k] for k in member_idx]),
                )
            )

        clusters.sort(key=lambda c: c.score, reverse=True)

        logger.debug(
            f"Clustered {len(entities)} entities into {len(clusters)} duplicate groups",
            extra={"entity_count": len(entities), "cluster_count": len(clusters)},
        )
        return clusters


def cluster_duplicates(
    entities: Sequence[EntitySnapshot], min_score: int = DEFAULT_MIN_SCORE
) -> list[DuplicateCluster]:
    """Functional shortcut for ``DuplicateClusterer(min_score).cluster(entities)``."""
    return DuplicateClusterer(min_score).cluster(entities)
