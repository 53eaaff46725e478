"""OpenRouter adapter: Chat Completions plus the aggregator's extra sampling knobs."""

from __future__ import annotations

from typing import Any, ClassVar, Optional

from agent_bridge.adapters.openai import OpenAIRequestAdapter
from agent_bridge.types.chat import InferenceOptions


class OpenRouterRequestAdapter(OpenAIRequestAdapter):
    """Adds ``top_k``, ``min_p`` and ``repetition_penalty``.

    ``num_ctx`` and ``repeat_last_n`` have no OpenRouter equivalent and are dropped.
    """

    error_prefix: ClassVar[str] = "OpenRouter error"

    def build_params(self, options: Optional[InferenceOptions]) -> dict[str, Any]:
        params = super().build_params(options)
        if options is None:
            return params
        if options.top_k is not None:
            params["top_k"] = options.top_k
        if options.min_p is not None:
            params["min_p"] = options.min_p
        if options.repeat_penalty is not None:
            params["repetition_penalty"] = options.repeat_penalty
        return params
