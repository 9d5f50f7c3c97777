from __future__ import annotations

from openai import AsyncOpenAI

from .constants import EMBEDDING_DIM, EMBEDDING_MODEL


class OpenAIEmbedder:
    def __init__(
        self,
        api_key: str | None = None,
        model: str = EMBEDDING_MODEL,
        embedding_dim: int = EMBEDDING_DIM,
    ):
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model
        self.embedding_dim = embedding_dim

    async def create_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in one request; the result keeps input order."""
        if not texts:
            return []
        cleaned = [t.replace("\n", " ") for t in texts]
        response = await self.client.embeddings.create(
            model=self.model,
            input=cleaned,
            dimensions=self.embedding_dim,
        )
        ordered = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in ordered]

    async def close(self) -> None:
        await self.client.close()
