from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Dict

import structlog
from dotenv import load_dotenv
from omegaconf import OmegaConf
from examsolver.core.logging_setup import configure_logging

APP_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = APP_ROOT / "config"

_logger = structlog.get_logger("examsolver")

_MODE_ENV = {
    "fast": ("FAST_BASE_URL", "FAST_MODEL", "FAST_MODEL_LIST"),
    "deep": ("DEEP_BASE_URL", "DEEP_MODEL", "DEEP_MODEL_LIST"),
    "ocr": ("OCR_BASE_URL", "OCR_MODEL", None),
}


def get_logger():
    # Centralized configuration (console + rotating JSONL file + redaction)
    configure_logging()
    return _logger


def _split_list(raw: str) -> list[str]:
    return [part.strip() for part in raw.split(",") if part.strip()]


def load_config(path: Path | None = None) -> Dict[str, Any]:
    load_dotenv()
    base_cfg = OmegaConf.load(path or (CONFIG_DIR / "default.yaml"))

    # Only variables that are actually set override the YAML
    overrides: Dict[str, Any] = {}
    api_key = os.getenv("EXAMSOLVER_API_KEY") or os.getenv("OPENAI_API_KEY")
    if api_key:
        overrides["api_key"] = api_key

    modes: Dict[str, Dict[str, Any]] = {}
    for mode, (url_var, model_var, list_var) in _MODE_ENV.items():
        mode_cfg: Dict[str, Any] = {}
        if os.getenv(url_var):
            mode_cfg["base_url"] = os.getenv(url_var)
        if os.getenv(model_var):
            mode_cfg["model"] = os.getenv(model_var)
        if list_var and os.getenv(list_var):
            mode_cfg["models"] = _split_list(os.getenv(list_var, ""))
        if mode_cfg:
            modes[mode] = mode_cfg
    if modes:
        overrides["modes"] = modes

    merged_cfg = OmegaConf.merge(base_cfg, OmegaConf.create(overrides))
    resolved: Dict[str, Any] = OmegaConf.to_container(merged_cfg, resolve=True)  # type: ignore[assignment]
    return resolved
