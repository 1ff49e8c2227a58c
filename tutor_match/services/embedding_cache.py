"""
Per-entity embedding cache on top of the listing store.

A cached vector is served only while it is fresh: computed no earlier than
the entity's last content change and, when a content hash is known, computed
from that exact content. Anything else reads as a miss.
"""
from datetime import datetime
from typing import Optional

import numpy as np

from tutor_match.models.listings import EmbeddingRecord
from tutor_match.services.embeddings import to_vector
from tutor_match.services.store import ListingStore
from tutor_match.utils.logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingCache:
    def __init__(self, store: ListingStore):
        self.store = store

    def get(self, entity, current_hash: Optional[str] = None) -> Optional[np.ndarray]:
        record: Optional[EmbeddingRecord] = entity.embedding
        if record is None:
            return None
        if not record.is_fresh(entity.updated_at, current_hash):
            logger.debug(f"Stale embedding for {entity.kind.value} {entity.entity_id}")
            return None
        return to_vector(record.vector)

    def is_fresh(self, entity, current_hash: Optional[str] = None) -> bool:
        return entity.embedding is not None and entity.embedding.is_fresh(entity.updated_at, current_hash)

    async def put(
        self,
        entity,
        vector: np.ndarray,
        source_hash: Optional[str] = None,
        embedding_model: Optional[str] = None,
    ) -> EmbeddingRecord:
        """Store a vector for the entity's current content. Last write wins."""
        record = EmbeddingRecord(
            vector=[float(x) for x in np.asarray(vector).ravel()],
            computed_at=datetime.utcnow(),
            source_hash=source_hash,
            embedding_model=embedding_model,
        )
        await self.store.save_embedding(entity.kind, entity.entity_id, record)
        entity.embedding = record
        logger.debug(f"Cached {record.dimensions}-d embedding for {entity.kind.value} {entity.entity_id}")
        return record
