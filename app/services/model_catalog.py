"""Supported models, backend names and per-token pricing."""

import math
from typing import Dict, List, NamedTuple, Optional


class ModelConfig(NamedTuple):
    id: str
    backend_name: str  # Name the inference backend knows the model by
    display_name: str
    input_per_1k: int  # Cost per 1000 input tokens
    output_per_1k: int  # Cost per 1000 output tokens
    max_context: int


SUPPORTED_MODELS: List[ModelConfig] = [
    ModelConfig("gpt-oss-20b", "gpt-oss:20b", "GPT-OSS 20B", 50_000, 75_000, 8192),
    ModelConfig("ministral-3-14b", "ministral-3:14b", "Ministral-3 14B", 25_000, 50_000, 8192),
    ModelConfig("gpt-oss-20b-cloud", "gpt-oss:20b:cloud", "GPT-OSS 20B Cloud", 80_000, 120_000, 16384),
]

_BY_ID: Dict[str, ModelConfig] = {m.id: m for m in SUPPORTED_MODELS}


def get_model(model_id: str) -> Optional[ModelConfig]:
    return _BY_ID.get(model_id)


def is_supported(model_id: str) -> bool:
    return model_id in _BY_ID


def count_tokens(text: Optional[str]) -> int:
    """Rough token estimate: one token per four characters."""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def calculate_actual_cost(model_id: str, input_tokens: int, output_tokens: int) -> float:
    """
    Cost of a finished job from its token counts.

    Raises:
        ValueError: If the model is unknown
    """
    model = get_model(model_id)
    if model is None:
        raise ValueError(f"Unknown model: {model_id}")

    input_cost = input_tokens * model.input_per_1k / 1000
    output_cost = output_tokens * model.output_per_1k / 1000
    return float(math.ceil(input_cost + output_cost))
