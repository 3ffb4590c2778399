"""Per-model-family request shaping, loaded from model_families.yml."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel

_FAMILIES_PATH = Path(__file__).parent.parent / "model_families.yml"


class ModelFamily(BaseModel):
    name: str
    prefix: str = ""
    supports_temperature: bool = True
    token_limit_field: str = "max_tokens"


DEFAULT_FAMILY = ModelFamily(name="default")


class FamilyTable:
    """Resolves a model name to the family whose prefix matches it best."""

    def __init__(self, families: list[ModelFamily]) -> None:
        # Longest prefix first
        self._families = sorted(families, key=lambda f: len(f.prefix), reverse=True)

    @classmethod
    def from_yaml(cls, path: Path | str = _FAMILIES_PATH) -> "FamilyTable":
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls([ModelFamily.model_validate(entry) for entry in data.get("families", [])])

    @property
    def families(self) -> list[ModelFamily]:
        return list(self._families)

    def resolve(self, model: str) -> ModelFamily:
        for family in self._families:
            if model.startswith(family.prefix):
                return family
        return DEFAULT_FAMILY

    def shape(
        self, model: str, *, temperature: float | None, max_tokens: int
    ) -> dict[str, Any]:
        """Sampling kwargs for this model: temperature (if accepted) and the token cap."""
        family = self.resolve(model)
        params: dict[str, Any] = {family.token_limit_field: max_tokens}
        if family.supports_temperature and temperature is not None:
            params["temperature"] = temperature
        return params


@lru_cache(maxsize=1)
def default_family_table() -> FamilyTable:
    return FamilyTable.from_yaml()
