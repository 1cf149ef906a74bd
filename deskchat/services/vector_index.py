"""
Ephemeral in-memory vector index.

Built for a single query from the chunk embeddings of one retrieval call
and discarded afterwards. Ranking is cosine similarity.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from deskchat.core.errors import RetrievalIndexError
from deskchat.models.chat import extract_domain

logger = logging.getLogger(__name__)


@dataclass
class RetrievedDocument:
    """A ranked chunk returned by the index."""

    source_url: str
    content: str
    embedding: list[float] = field(repr=False)
    rank: float = 0.0

    @property
    def domain(self) -> str:
        return extract_domain(self.source_url)


class VectorIndex:
    """Cosine-similarity index over a fixed set of chunk embeddings."""

    def __init__(
        self,
        contents: list[str],
        sources: list[str],
        embeddings: list[list[float]],
    ) -> None:
        if not (len(contents) == len(sources) == len(embeddings)):
            raise RetrievalIndexError(
                f"Got {len(contents)} chunks but {len(embeddings)} embeddings"
            )
        self._contents = contents
        self._sources = sources
        self._embeddings = embeddings

        if embeddings:
            try:
                matrix = np.asarray(embeddings, dtype=np.float32)
            except ValueError as exc:
                raise RetrievalIndexError(f"Embeddings have inconsistent sizes: {exc}") from exc
            if matrix.ndim != 2 or matrix.shape[1] == 0:
                raise RetrievalIndexError(f"Unexpected embedding matrix shape {matrix.shape}")
            self._matrix = _normalize_rows(matrix)
        else:
            self._matrix = np.zeros((0, 0), dtype=np.float32)

    def __len__(self) -> int:
        return len(self._contents)

    def search(self, query_vector: list[float], top_k: int = 5) -> list[RetrievedDocument]:
        """
        Rank the indexed chunks against a query embedding.

        Returns:
            Up to ``top_k`` documents, most similar first.
        """
        if len(self) == 0:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        if query.ndim != 1 or query.shape[0] != self._matrix.shape[1]:
            raise RetrievalIndexError(
                f"Query vector has {query.shape} dims, index has {self._matrix.shape[1]}"
            )
        norm = np.linalg.norm(query)
        if norm > 0:
            query = query / norm

        scores = self._matrix @ query
        order = np.argsort(-scores, kind="stable")[:top_k]
        results = [
            RetrievedDocument(
                source_url=self._sources[i],
                content=self._contents[i],
                embedding=self._embeddings[i],
                rank=float(scores[i]),
            )
            for i in order
        ]
        logger.debug("Index of %d chunks returned %d results", len(self), len(results))
        return results


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms
