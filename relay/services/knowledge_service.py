import hashlib
import json
from typing import List, Optional

import httpx
import redis

from relay.config import Settings
from relay.logging_config import get_logger
from relay.services.alert_service import alert_warning
from relay.services.llm import LLMProvider

logger = get_logger("knowledge_service")

SEARCH_LIMIT = 5
SIMILARITY_THRESHOLD = 0.78
EMBEDDING_CACHE_TTL_SECONDS = 86400


def _embedding_cache_key(text: str) -> str:
    return f"emb:{hashlib.sha256(text.encode('utf-8')).hexdigest()}"


class KnowledgeRetriever:
    """Vector search over an agent's knowledge chunks stored in Qdrant."""

    def __init__(self, llm: LLMProvider, cache: Optional[redis.Redis], settings: Settings):
        self.llm = llm
        self.cache = cache
        self.qdrant_url = settings.qdrant_url.rstrip("/")
        self.qdrant_api_key = settings.qdrant_api_key
        self.collection = settings.qdrant_collection

    def get_embedding(self, text: str) -> List[float]:
        """Embed text, caching the vector in Redis for 24h."""
        key = _embedding_cache_key(text)
        if self.cache is not None:
            try:
                cached = self.cache.get(key)
                if cached:
                    return json.loads(cached)
            except redis.RedisError as e:
                logger.warning(f"Embedding cache read failed (non-fatal): {e}")

        embedding = self.llm.embed(text)

        if self.cache is not None:
            try:
                self.cache.setex(key, EMBEDDING_CACHE_TTL_SECONDS, json.dumps(embedding))
            except redis.RedisError as e:
                logger.warning(f"Embedding cache write failed (non-fatal): {e}")
        return embedding

    def search(
        self,
        agent_id,
        query: str,
        limit: int = SEARCH_LIMIT,
        score_threshold: float = SIMILARITY_THRESHOLD,
    ) -> List[dict]:
        """Search active, READY chunks of one agent. Raises on transport errors."""
        embedding = self.get_embedding(query)

        headers = {"api-key": self.qdrant_api_key} if self.qdrant_api_key else {}
        with httpx.Client(timeout=30.0) as client:
            response = client.post(
                f"{self.qdrant_url}/collections/{self.collection}/points/search",
                headers=headers,
                json={
                    "vector": embedding,
                    "limit": limit,
                    "score_threshold": score_threshold,
                    "filter": {
                        "must": [
                            {"key": "agent_id", "match": {"value": str(agent_id)}},
                            {"key": "doc_active", "match": {"value": True}},
                            {"key": "doc_status", "match": {"value": "READY"}},
                        ]
                    },
                    "with_payload": True,
                },
            )

        if response.status_code != 200:
            logger.error(f"Qdrant search error: {response.status_code} - {response.text}")
            alert_warning("Qdrant search failed", {"status": response.status_code, "agent_id": str(agent_id)})
            return []

        results = []
        for point in response.json().get("result", []):
            score = point.get("score") or 0.0
            # Qdrant's score_threshold is inclusive; keep strictly-above matches only
            if score <= score_threshold:
                continue
            payload = point.get("payload", {})
            results.append(
                {
                    "score": score,
                    "text": payload.get("content", ""),
                    "doc_id": payload.get("doc_id"),
                }
            )

        logger.info(f"Knowledge search: found {len(results)} results for '{query[:30]}...'")
        return results

    def retrieve(self, agent_id, query: str) -> List[str]:
        """Passage texts for the prompt. Any failure degrades to no context."""
        try:
            return [r["text"] for r in self.search(agent_id, query) if r.get("text")]
        except Exception as e:
            logger.warning(
                f"Knowledge retrieval failed, continuing without context: {e}",
                extra={"context": {"agent_id": str(agent_id)}},
            )
            return []


def format_knowledge_context(passages: List[str]) -> str:
    if not passages:
        return ""
    blocks = "\n\n".join(f"[{i}] {text}" for i, text in enumerate(passages, 1))
    return f"\n\n## Relevant Knowledge Base\nUse the following context to answer accurately:\n\n{blocks}"
