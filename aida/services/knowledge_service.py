import os
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import httpx

from aida.logging_config import get_logger
from aida.services.alert_service import alert_warning
from aida.services.response_types import KnowledgeSource

logger = get_logger("knowledge_service")

QDRANT_HOST = os.environ.get("QDRANT_HOST", "http://qdrant:6333")
QDRANT_API_KEY = os.environ.get("QDRANT_API_KEY")
QDRANT_COLLECTION = os.environ.get("QDRANT_COLLECTION", "aida_knowledge")
EMBEDDING_URL = os.environ.get("EMBEDDING_URL", "http://bge-m3:80/embed")
RETRIEVAL_TIMEOUT_SECONDS = float(os.environ.get("RETRIEVAL_TIMEOUT_SECONDS", "10"))


class RetrievalError(Exception):
    pass


class KnowledgeRetriever(ABC):
    """Ranks knowledge snippets for a query within one business."""

    @abstractmethod
    async def search(
        self,
        query: str,
        business_id: str,
        limit: int = 8,
        min_score: float = 0.5,
    ) -> List[KnowledgeSource]:
        pass

    async def health_check(self) -> bool:
        return True


class QdrantRetriever(KnowledgeRetriever):
    """Vector search over a Qdrant collection, filtered by business."""

    def __init__(
        self,
        host: str = QDRANT_HOST,
        api_key: Optional[str] = QDRANT_API_KEY,
        collection: str = QDRANT_COLLECTION,
        embedding_url: str = EMBEDDING_URL,
        timeout_seconds: float = RETRIEVAL_TIMEOUT_SECONDS,
    ):
        self.host = host.rstrip("/")
        self.api_key = api_key
        self.collection = collection
        self.embedding_url = embedding_url
        self.timeout_seconds = timeout_seconds

    def _headers(self) -> dict:
        return {"api-key": self.api_key} if self.api_key else {}

    async def get_embedding(self, text: str) -> List[float]:
        """Get embedding from the embedding service."""
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(self.embedding_url, json={"inputs": text})
            if response.status_code != 200:
                raise RetrievalError(f"Embedding error: {response.status_code} - {response.text}")

            data = response.json()
            # Handle different response formats
            if isinstance(data, list) and len(data) > 0:
                return data[0] if isinstance(data[0], list) else data
            return data.get("embedding") or data.get("embeddings") or data

    async def search(
        self,
        query: str,
        business_id: str,
        limit: int = 8,
        min_score: float = 0.5,
    ) -> List[KnowledgeSource]:
        embedding = await self.get_embedding(query)

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.post(
                f"{self.host}/collections/{self.collection}/points/search",
                headers=self._headers(),
                json={
                    "vector": embedding,
                    "limit": limit,
                    "score_threshold": min_score,
                    "filter": {"must": [{"key": "metadata.business_id", "match": {"value": business_id}}]},
                    "with_payload": True,
                },
            )

        if response.status_code != 200:
            logger.error(f"Qdrant search error: {response.status_code} - {response.text}")
            await alert_warning("Qdrant search failed", {"status": response.status_code, "query": query[:50]})
            raise RetrievalError(f"Qdrant search error: {response.status_code}")

        results = []
        for point in response.json().get("result", []):
            payload = point.get("payload", {})
            metadata = payload.get("metadata", {})
            content = payload.get("content")
            if not content:
                continue
            results.append(
                KnowledgeSource(
                    content=content,
                    score=float(point.get("score") or 0.0),
                    source=metadata.get("doc_name") or metadata.get("source"),
                    source_id=str(point.get("id")) if point.get("id") is not None else None,
                )
            )

        logger.info(f"Knowledge search: found {len(results)} results for '{query[:30]}...'")
        return results

    async def health_check(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.get(f"{self.host}/collections/{self.collection}", headers=self._headers())
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Qdrant health check failed: {e}")
            return False


def format_knowledge_context(sources: Sequence[KnowledgeSource]) -> str:
    """Format retrieved sources for the LLM context."""
    if not sources:
        return ""

    context_parts = ["Relevant information from the knowledge base:"]
    index = 1
    for source in sources:
        if source.content:
            context_parts.append(f"{index}. {source.content}")
            index += 1

    return "\n".join(context_parts)
