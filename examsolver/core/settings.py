from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from examsolver.core.types import AIConfig, Mode
from examsolver.core.utils import load_config

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODELS = {"fast": "gpt-4o-mini", "deep": "gpt-4o", "ocr": "gpt-4o"}


def normalize_model_list(model_ids: Iterable[str], fallback_model: str) -> List[str]:
    """Trim, drop blanks and duplicates (keeping first occurrence order)."""
    seen: List[str] = []
    for mid in model_ids:
        mid = str(mid or "").strip()
        if mid and mid not in seen:
            seen.append(mid)
    return seen or [fallback_model]


@dataclass
class ModeSettings:
    base_url: str
    selected_model: str
    models: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], default_model: str) -> "ModeSettings":
        selected = str(raw.get("model") or "").strip() or default_model
        # The selected model always belongs to the list
        models = normalize_model_list(list(raw.get("models") or []) + [selected], selected)
        return cls(
            base_url=str(raw.get("base_url") or DEFAULT_BASE_URL).strip(),
            selected_model=selected,
            models=models,
        )


@dataclass
class Settings:
    """Read-only view of the persisted provider configuration.

    Persistence itself belongs to the host application; this object is built
    from the merged YAML/env config.
    """

    api_key: str
    fast: ModeSettings
    deep: ModeSettings
    ocr: ModeSettings
    http: Dict[str, float] = field(default_factory=dict)
    solve_prompt: str = ""

    @classmethod
    def from_config(cls, cfg: Dict[str, Any]) -> "Settings":
        modes = cfg.get("modes", {}) or {}
        return cls(
            api_key=str(cfg.get("api_key") or "").strip(),
            fast=ModeSettings.from_dict(modes.get("fast", {}) or {}, DEFAULT_MODELS["fast"]),
            deep=ModeSettings.from_dict(modes.get("deep", {}) or {}, DEFAULT_MODELS["deep"]),
            ocr=ModeSettings.from_dict(modes.get("ocr", {}) or {}, DEFAULT_MODELS["ocr"]),
            http={k: float(v) for k, v in (cfg.get("http", {}) or {}).items()},
            solve_prompt=str((cfg.get("prompts", {}) or {}).get("solve_system") or ""),
        )

    @classmethod
    def load(cls) -> "Settings":
        return cls.from_config(load_config())

    def mode(self, mode: Mode) -> ModeSettings:
        return self.fast if mode is Mode.FAST else self.deep

    def model_list(self, mode: Mode) -> List[str]:
        return list(self.mode(mode).models)

    def selected_model(self, mode: Mode) -> str:
        ms = self.mode(mode)
        if ms.models and ms.selected_model not in ms.models:
            return ms.models[0]
        return ms.selected_model

    def config_for(self, mode: Mode, model_id: Optional[str] = None) -> AIConfig:
        ms = self.mode(mode)
        return AIConfig(
            base_url=ms.base_url,
            model_id=(model_id or self.selected_model(mode)).strip(),
            api_key=self.api_key,
        )

    def ocr_config(self) -> AIConfig:
        return AIConfig(
            base_url=self.ocr.base_url, model_id=self.ocr.selected_model, api_key=self.api_key
        )
