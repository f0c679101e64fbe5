from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class RequestOverrides:
    """Per-request values supplied by the caller and passed down explicitly.

    API keys replace the configured provider keys for this request only.
    """

    generation_api_key: Optional[str] = field(default=None, repr=False)
    embedding_api_key: Optional[str] = field(default=None, repr=False)
    trace_id: Optional[str] = None

    @classmethod
    def from_values(
        cls,
        generation_api_key: Optional[str] = None,
        embedding_api_key: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> "RequestOverrides":
        def _clean(value: Optional[str]) -> Optional[str]:
            stripped = (value or "").strip()
            return stripped or None

        return cls(
            generation_api_key=_clean(generation_api_key),
            embedding_api_key=_clean(embedding_api_key),
            trace_id=_clean(trace_id),
        )


NO_OVERRIDES = RequestOverrides()
