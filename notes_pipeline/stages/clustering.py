# notes_pipeline/stages/clustering.py
"""
Clustering stage.

Per item: check that the enriched note carries a usable embedding. Once
every item is settled: cluster all valid embeddings with k-means and write
clusters/cluster_assignments.json.
"""

import asyncio
import logging
import math
from collections.abc import Callable
from functools import partial

import numpy as np
from sklearn.cluster import KMeans
from sklearn.metrics import silhouette_score

from notes_pipeline.errors import ItemError
from notes_pipeline.pipeline.checkpoint import atomic_write_json
from notes_pipeline.pipeline.models import Stage, item_id_sort_key, sorted_item_ids
from notes_pipeline.pipeline.runner import ItemOutcome

from .base import DataLayout, PipelineStage, read_model
from .records import ClusterAssignments, EnrichedNote

logger = logging.getLogger(__name__)

ClusterAssigner = Callable[[dict[str, list[float]]], dict[str, int]]


def validate_embedding(note: EnrichedNote) -> list[float]:
    """
    Return the note's embedding if it can be clustered.

    Raises:
        ItemError: If the embedding is empty or holds non-finite values
    """
    if not note.embedding:
        raise ItemError(f"Note {note.id} has no embedding")
    if not all(math.isfinite(value) for value in note.embedding):
        raise ItemError(f"Note {note.id} has a non-finite embedding value")
    return note.embedding


def _choose_num_clusters(matrix: np.ndarray, max_clusters: int, seed: int) -> int:
    """Pick k in [2, min(max_clusters, n/2)] with the best silhouette score (1 if none fits)."""
    upper = min(max_clusters, matrix.shape[0] // 2)
    best_k, best_score = 1, -1.0
    for k in range(2, upper + 1):
        labels = KMeans(n_clusters=k, random_state=seed, n_init=10).fit_predict(matrix)
        if len(set(labels)) < 2:
            continue
        score = float(silhouette_score(matrix, labels))
        if score > best_score:
            best_k, best_score = k, score

    logger.info(f"Chose {best_k} clusters (silhouette score: {best_score:.3f})")
    return best_k


def kmeans_assign(
    embeddings: dict[str, list[float]],
    num_clusters: int | None = None,
    max_clusters: int = 20,
    seed: int = 42,
) -> dict[str, int]:
    """
    Assign each id to a k-means cluster.

    Args:
        embeddings: Item id -> embedding (all the same dimension)
        num_clusters: k (None = choose by silhouette score); capped at the item count
        max_clusters: Upper bound when choosing k
        seed: Random state for reproducible assignments

    Returns:
        Item id -> cluster index

    Raises:
        ValueError: If embeddings differ in dimension
    """
    ids = sorted_item_ids(list(embeddings))
    if not ids:
        return {}

    dimensions = {len(embeddings[item_id]) for item_id in ids}
    if len(dimensions) > 1:
        raise ValueError(f"Embeddings have inconsistent dimensions: {sorted(dimensions)}")

    matrix = np.asarray([embeddings[item_id] for item_id in ids], dtype=float)
    if num_clusters is None:
        k = _choose_num_clusters(matrix, max_clusters, seed)
    else:
        k = min(num_clusters, len(ids))

    if k <= 1:
        return {item_id: 0 for item_id in ids}

    labels = KMeans(n_clusters=k, random_state=seed, n_init=10).fit_predict(matrix)
    return {item_id: int(label) for item_id, label in zip(ids, labels)}


def make_kmeans_assigner(
    num_clusters: int | None = None, max_clusters: int = 20, seed: int = 42
) -> ClusterAssigner:
    return partial(kmeans_assign, num_clusters=num_clusters, max_clusters=max_clusters, seed=seed)


class ClusteringStage(PipelineStage):
    """Validates embeddings per item, then clusters them in finalize()."""

    def __init__(
        self,
        layout: DataLayout,
        assigner: ClusterAssigner = kmeans_assign,
        parameters: dict[str, int | None] | None = None,
    ) -> None:
        """
        Args:
            layout: Data directory layout
            assigner: Maps id -> embedding to id -> cluster
            parameters: Assigner settings recorded in the output file
        """
        super().__init__(layout)
        self._assigner = assigner
        self._parameters = parameters or {}

    @property
    def stage(self) -> Stage:
        return Stage.CLUSTERING

    async def process_item(self, item_id: str) -> ItemOutcome:
        note = await self._read(self._layout.enriched_dir, item_id, EnrichedNote)
        validate_embedding(note)
        return ItemOutcome.ok()

    def _load_embeddings(self) -> dict[str, list[float]]:
        embeddings: dict[str, list[float]] = {}
        paths = sorted(
            self._layout.enriched_dir.glob("note-*.json"),
            key=lambda path: item_id_sort_key(path.stem.removeprefix("note-")),
        )
        for path in paths:
            try:
                note = read_model(path, EnrichedNote)
                embeddings[note.id] = validate_embedding(note)
            except ItemError as e:
                logger.warning(f"Leaving {path.name} out of clustering: {e}")
        return embeddings

    async def finalize(self) -> None:
        embeddings = await asyncio.to_thread(self._load_embeddings)
        if not embeddings:
            logger.warning("No valid embeddings to cluster; writing empty assignments")

        assignments = await asyncio.to_thread(self._assigner, embeddings)
        result = ClusterAssignments(
            parameters=self._parameters,
            total_notes=len(assignments),
            total_clusters=len(set(assignments.values())),
            assignments=assignments,
        )
        await asyncio.to_thread(
            atomic_write_json,
            self._layout.cluster_assignments_path,
            result.model_dump(mode="json"),
        )
        logger.info(
            f"Clustered {result.total_notes} notes into {result.total_clusters} clusters"
        )
