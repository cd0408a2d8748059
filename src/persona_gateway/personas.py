"""Persona configuration storage."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Protocol

import yaml

from .config import DEFAULT_PERSONA_DIR

LOGGER = logging.getLogger("persona_gateway.personas")

_PERSONA_NAME = re.compile(r"^[a-z0-9][a-z0-9_-]*$")


class PersonaNotFoundError(KeyError):
    """Raised when no configuration exists for the requested persona."""

    def __init__(self, persona: str) -> None:
        super().__init__(persona)
        self.persona = persona

    def __str__(self) -> str:
        return f"Configuration not found for persona: {self.persona}"


@dataclass(frozen=True)
class PersonaConfig:
    """System prompt and examples describing one persona."""

    persona: str
    system_prompt: str
    examples: List[Dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, name: str, data: Mapping) -> "PersonaConfig":
        examples = [
            {"user": str(item.get("user", "")), "assistant": str(item.get("assistant", ""))}
            for item in data.get("examples") or []
            if isinstance(item, Mapping)
        ]
        return cls(
            persona=str(data.get("persona") or name),
            system_prompt=str(data.get("system_prompt") or "").strip(),
            examples=examples,
        )


class PersonaStore(Protocol):
    """Read-only lookup of persona configurations."""

    def get(self, name: str) -> PersonaConfig:
        """Return the persona or raise PersonaNotFoundError."""

    def available(self) -> List[str]:
        """Names of every persona the store can serve."""


class InMemoryPersonaStore(PersonaStore):
    """Dictionary-backed store primarily for testing or embedding."""

    def __init__(self, personas: Optional[Mapping[str, PersonaConfig]] = None) -> None:
        self._personas: Dict[str, PersonaConfig] = dict(personas or {})

    def get(self, name: str) -> PersonaConfig:
        try:
            return self._personas[name]
        except KeyError:
            raise PersonaNotFoundError(name) from None

    def available(self) -> List[str]:
        return sorted(self._personas)


class YamlPersonaStore(PersonaStore):
    """Loads ``<name>.yaml`` files from a directory and caches them after first use."""

    def __init__(self, directory: Optional[Path] = None) -> None:
        self._directory = Path(directory) if directory is not None else DEFAULT_PERSONA_DIR
        self._cache: Dict[str, PersonaConfig] = {}

    @property
    def directory(self) -> Path:
        return self._directory

    def get(self, name: str) -> PersonaConfig:
        if name in self._cache:
            return self._cache[name]
        # Persona names come from callers; keep lookups inside the directory.
        if not _PERSONA_NAME.match(name):
            raise PersonaNotFoundError(name)

        path = self._directory / f"{name}.yaml"
        if not path.exists():
            raise PersonaNotFoundError(name)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            LOGGER.error("Failed to load persona file %s: %s", path, exc)
            raise PersonaNotFoundError(name) from exc
        if not isinstance(data, Mapping):
            LOGGER.error("Persona file %s is not a mapping", path)
            raise PersonaNotFoundError(name)

        persona = PersonaConfig.from_mapping(name, data)
        self._cache[name] = persona
        LOGGER.info("Loaded configuration for persona: %s", name)
        return persona

    def available(self) -> List[str]:
        if not self._directory.is_dir():
            return []
        return sorted(path.stem for path in self._directory.glob("*.yaml"))
