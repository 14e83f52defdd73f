from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Mode(str, Enum):
    FAST = "fast"
    DEEP = "deep"


@dataclass(frozen=True)
class Question:
    """One question produced by the OCR pass. `id` is 1-based in stream order."""

    id: int
    text: str


@dataclass(frozen=True)
class AIConfig:
    base_url: str
    model_id: str
    api_key: str

    def is_valid(self) -> bool:
        return bool(
            self.base_url.strip() and self.model_id.strip() and self.api_key.strip()
        )


@dataclass(frozen=True)
class ModelAssignment:
    question_id: int
    mode: Mode
    model_id: str


@dataclass
class RemoteModel:
    id: str
    name: str
    owned_by: Optional[str] = None
    supported_endpoint_types: List[str] = field(default_factory=list)


@dataclass
class ModelListResult:
    success: bool
    models: List[RemoteModel] = field(default_factory=list)
    response_body: str = ""


# Chat messages are sent as-is; content is a string or a list of typed parts
Message = Dict[str, Any]
