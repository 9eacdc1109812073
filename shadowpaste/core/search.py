"""Hybrid ranking of clipboard history: substring matches first, then semantic similarity."""

import logging
from typing import List, Optional, Sequence, Tuple

from shadowpaste.core.cache import QueryEmbeddingCache
from shadowpaste.core.intelligence import Embedding, EmbeddingService, cosine_similarity
from shadowpaste.models.schemas import Entry, ImageContent, SearchResult, TextContent

logger = logging.getLogger(__name__)

IMAGE_SIMILARITY_SCALE = 10.0
TEXT_MATCH_BONUS = 2.0


def normalize_query(query: str) -> str:
    return query.strip().casefold()


def rank(
    history: Sequence[Entry],
    query: str,
    query_embedding: Optional[Sequence[float]] = None,
    image_scale: float = IMAGE_SIMILARITY_SCALE,
    match_bonus: float = TEXT_MATCH_BONUS,
) -> List[SearchResult]:
    """Order ``history`` (oldest first) by relevance to ``query``.

    An empty query returns everything newest first, unscored. Otherwise each
    entry scores its cosine similarity to the query vector (image entries
    scaled by ``image_scale``), plus ``match_bonus`` when it is text that
    contains the query. Without a query vector the ranking reduces to
    substring matching.
    """
    query = normalize_query(query)
    if not query:
        return [SearchResult(entry=entry) for entry in reversed(history)]

    results = []
    for entry in history:
        content = entry.content
        text_match = isinstance(content, TextContent) and query in content.text.casefold()

        similarity = 0.0
        if query_embedding is not None and entry.embedding is not None:
            similarity = cosine_similarity(query_embedding, entry.embedding)

        scaled = similarity * image_scale if isinstance(content, ImageContent) else similarity
        score = match_bonus + scaled if text_match else scaled

        results.append(
            SearchResult(
                entry=entry, similarity=similarity, score=score, text_match=text_match
            )
        )

    results.sort(key=lambda result: result.score, reverse=True)
    return results


class QueryState:
    """Current query and its lazily computed embedding."""

    def __init__(self):
        self.text = ""
        self.embedding: Optional[Embedding] = None
        self.generation = 0

    @property
    def normalized(self) -> str:
        return normalize_query(self.text)

    def update(self, raw_query: str) -> bool:
        """Set the query; a changed query drops the embedding. Returns whether it changed."""
        text = raw_query.strip()
        if text == self.text:
            return False
        self.text = text
        self.embedding = None
        self.generation += 1
        return True

    def resolve(self, generation: int, embedding: Embedding) -> bool:
        """Attach an embedding computed for ``generation``; stale results are dropped."""
        if generation != self.generation:
            return False
        self.embedding = embedding
        return True


class SearchEngine:
    """Ranks a snapshot of history against the current query."""

    def __init__(
        self,
        history,
        intelligence: EmbeddingService,
        cache: Optional[QueryEmbeddingCache] = None,
        image_scale: float = IMAGE_SIMILARITY_SCALE,
        match_bonus: float = TEXT_MATCH_BONUS,
    ):
        self.history = history
        self.intelligence = intelligence
        self.cache = cache
        self.image_scale = image_scale
        self.match_bonus = match_bonus
        self.state = QueryState()

    def rank_current(self) -> List[SearchResult]:
        return rank(
            self.history.snapshot(),
            self.state.normalized,
            self.state.embedding,
            image_scale=self.image_scale,
            match_bonus=self.match_bonus,
        )

    def submit_query(self, raw_query: str) -> List[SearchResult]:
        """Rank immediately with whatever query vector is already available."""
        self.state.update(raw_query)
        return self.rank_current()

    async def embed_query(self, text: str) -> Optional[Embedding]:
        """Query vector from the cache or the embedder; None when unavailable."""
        embedding = None
        if self.cache is not None:
            embedding = await self.cache.get(text)
        if embedding is None:
            embedding = await self.intelligence.aembed_query(text)
            if embedding is not None and self.cache is not None:
                await self.cache.set(text, embedding)
        return embedding

    async def refresh_query_embedding(self) -> bool:
        """Compute the vector for the current query. False if unavailable or stale."""
        text = self.state.text
        generation = self.state.generation
        if not text:
            return False
        if self.state.embedding is not None:
            return True

        embedding = await self.embed_query(text)
        if embedding is None:
            return False

        resolved = self.state.resolve(generation, embedding)
        if not resolved:
            logger.debug(f"Discarding embedding for stale query {text!r}")
        return resolved

    async def search(self, raw_query: str) -> Tuple[List[SearchResult], bool]:
        """Rank history against ``raw_query`` alone.

        Concurrent searches do not share results: the query and its vector
        stay local to this call, and ``state`` only tracks the latest query.
        Returns the results and whether a query vector was used.
        """
        text = raw_query.strip()
        self.state.update(text)
        generation = self.state.generation

        embedding = await self.embed_query(text) if text else None
        if embedding is not None:
            self.state.resolve(generation, embedding)

        results = rank(
            self.history.snapshot(),
            text,
            embedding,
            image_scale=self.image_scale,
            match_bonus=self.match_bonus,
        )
        return results, embedding is not None
