from __future__ import annotations
from typing import Callable, Dict, List, Tuple

from examsolver.core.types import Mode, ModelAssignment


class ModelSelectionPolicy:
    """Per-(question, mode) model choice with sticky overrides.

    ``model_list`` and ``selected_model`` are read on every call so that
    settings edited mid-session take effect on the next start or retry.
    """

    def __init__(
        self,
        model_list: Callable[[Mode], List[str]],
        selected_model: Callable[[Mode], str],
    ) -> None:
        self._model_list = model_list
        self._selected_model = selected_model
        self._assigned: Dict[Tuple[int, Mode], str] = {}

    def default_model(self, mode: Mode) -> str:
        selected = (self._selected_model(mode) or "").strip()
        models = self._model_list(mode)
        if models and selected not in models:
            return models[0]
        return selected

    def set_override(self, question_id: int, mode: Mode, model_id: str) -> None:
        if question_id <= 0:
            return
        normalized = (model_id or "").strip()
        if not normalized:
            return
        self._assigned[(question_id, mode)] = normalized

    def resolve(self, question_id: int, mode: Mode) -> str:
        if question_id <= 0:
            return self.default_model(mode)
        models = self._model_list(mode)
        key = (question_id, mode)
        current = self._assigned.setdefault(key, self.default_model(mode))
        if current and (not models or current in models):
            resolved = current
        else:
            resolved = self.default_model(mode)
        self._assigned[key] = resolved
        return resolved

    def assignment(self, question_id: int, mode: Mode) -> ModelAssignment:
        return ModelAssignment(question_id, mode, self.resolve(question_id, mode))

    def clear(self) -> None:
        self._assigned.clear()
