"""Persistence helpers for per-department role templates."""
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import yaml

from .config import ConfigurationError
from .errors import TemplateNotFoundError
from .models import RoleTemplate

TEMPLATE_SUFFIXES = (".yaml", ".yml")


class RoleTemplateStore:
    """Loads role templates stored as one YAML file per department."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)

    def _candidates(self) -> List[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(
            path for path in self.directory.iterdir() if path.suffix.lower() in TEMPLATE_SUFFIXES
        )

    def _find(self, department: str) -> Optional[Path]:
        cleaned = (department or "").strip()
        if not cleaned:
            return None
        candidates = self._candidates()
        for path in candidates:
            if path.stem == cleaned:
                return path
        lowered = cleaned.casefold()
        for path in candidates:
            if path.stem.casefold() == lowered:
                return path
        return None

    def load(self, department: str) -> RoleTemplate:
        """Load the template for ``department``; no default is ever substituted."""

        path = self._find(department)
        if path is None:
            raise TemplateNotFoundError(department)

        with path.open("r", encoding="utf-8") as handle:
            try:
                payload = yaml.safe_load(handle) or {}
            except yaml.YAMLError as exc:
                raise ConfigurationError(f"Role template '{path}' is not valid YAML: {exc}") from exc
        if not isinstance(payload, dict):
            raise ConfigurationError(f"Role template '{path}' must contain a mapping.")
        try:
            return RoleTemplate.from_dict(payload, department=path.stem)
        except ValueError as exc:
            raise ConfigurationError(f"Role template '{path}' is invalid: {exc}") from exc

    def departments(self) -> List[str]:
        return [path.stem for path in self._candidates()]

    def save(self, template: RoleTemplate) -> Path:
        """Persist a template, replacing any existing file for the department."""

        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._find(template.department) or self.directory / f"{template.department}.yaml"
        with path.open("w", encoding="utf-8") as handle:
            yaml.safe_dump(template.to_dict(), handle, sort_keys=False)
        return path


__all__ = ["RoleTemplateStore", "TEMPLATE_SUFFIXES"]
