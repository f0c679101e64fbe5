from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class IEmbeddingProvider(ABC):
    """
    Interface for embedding providers.
    Shared by concurrent runs, so implementations keep no per-run state.
    """

    @abstractmethod
    async def embed(self, text: str, api_key: Optional[str] = None) -> List[float]:
        """
        Returns the embedding vector for a single text. Raises on failure.
        `api_key` replaces the configured key for this call only.
        """
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass

    @property
    @abstractmethod
    def embedding_dimensions(self) -> int:
        pass

    def profile(self) -> Dict[str, Any]:
        return {
            "model": str(self.model_name),
            "dimensions": int(self.embedding_dimensions),
        }
