"""FlowCatalog — loads experiences and events from YAML into typed models.

This is the read-only configuration source for the engine.  The catalog
is loaded once at startup and implements both provider interfaces.

Layout::

    flows/
      experiences/<experience_id>.yaml
      events/<event_id>.yaml

Usage::

    catalog = FlowCatalog()         # defaults to flows/ relative to repo root
    catalog.load()                  # parse all YAML files

    exp = catalog.get_experience("scenario-photo")
    extras = catalog.get_extras_config("launch-party")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from flow_engine.interfaces import ExperienceProvider, ExtrasProvider
from flow_engine.models.enums import StepType
from flow_engine.models.experience import EventConfig, Experience, ExtrasConfig
from flow_engine.prompt import PromptResolver

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------

def find_repo_root(start: Optional[Path] = None) -> Path:
    """Walk upwards from *start* to find the repo root (dir with pyproject.toml or .git).

    Falls back to cwd if no marker is found.
    """
    p = (start or Path(__file__).resolve()).parent
    for parent in [p, *p.parents]:
        if (parent / "pyproject.toml").exists() or (parent / ".git").exists():
            return parent
    return Path.cwd()


def load_yaml(path: Path | str) -> Any:
    """Load a single YAML file and return the parsed contents."""
    if isinstance(path, str):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing YAML file: {path}")
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


# ---------------------------------------------------------------------------
# FlowCatalog
# ---------------------------------------------------------------------------

class FlowCatalog(ExperienceProvider, ExtrasProvider):
    """Loads all YAML under ``flows/`` and provides typed lookup.

    Attributes populated after :meth:`load`:

        experiences — dict[id, Experience]
        events      — dict[id, EventConfig]
    """

    def __init__(
        self,
        catalog_dir: str | Path | None = None,
        prompts: Optional[PromptResolver] = None,
    ) -> None:
        if catalog_dir is None:
            catalog_dir = find_repo_root() / "flows"
        self._base = Path(catalog_dir)
        self._prompts = prompts or PromptResolver()

        # Populated by load()
        self.experiences: dict[str, Experience] = {}
        self.events: dict[str, EventConfig] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Parse every experience and event file.

        Raises ``FileNotFoundError`` if the catalog directory is missing and
        ``ValueError`` naming the file for invalid content.
        """
        if not self._base.is_dir():
            raise FileNotFoundError(f"Missing catalog directory: {self._base}")
        for path in sorted((self._base / "experiences").glob("*.yaml")):
            exp = self._parse(path, Experience)
            self._check_prompts(exp, path)
            self.experiences[exp.id] = exp
        for path in sorted((self._base / "events").glob("*.yaml")):
            event = self._parse(path, EventConfig)
            self.events[event.id] = event
        logger.info(
            "FlowCatalog loaded: %d experiences, %d events from %s",
            len(self.experiences), len(self.events), self._base,
        )

    def register_experience(self, experience: Experience) -> None:
        """Add or replace an experience at runtime (tests, editors)."""
        self._check_prompts(experience, None)
        self.experiences[experience.id] = experience

    def register_event(self, event: EventConfig) -> None:
        self.events[event.id] = event

    def _parse(self, path: Path, model):
        raw = load_yaml(path)
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            raise ValueError(f"Invalid {model.__name__} in {path}: {exc}") from exc

    def _check_prompts(self, experience: Experience, path: Optional[Path]) -> None:
        for step in experience.steps:
            if step.type != StepType.AI_TRANSFORM.value:
                continue
            try:
                self._prompts.validate(step.config.prompt)
            except ValueError as exc:
                where = path or experience.id
                raise ValueError(f"{where}: step {step.id!r}: {exc}") from exc

    # ------------------------------------------------------------------
    # Provider interface
    # ------------------------------------------------------------------

    def get_experience(self, experience_id: str) -> Optional[Experience]:
        return self.experiences.get(experience_id)

    def get_extras_config(self, event_id: str) -> ExtrasConfig:
        event = self.events.get(event_id)
        if event is None:
            logger.warning("Unknown event %s; no extras applied", event_id)
            return ExtrasConfig()
        return event.extras

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def get_event(self, event_id: str) -> EventConfig:
        """Return the event or raise ``KeyError``."""
        try:
            return self.events[event_id]
        except KeyError:
            raise KeyError(f"Event {event_id!r} not found") from None

    def list_experiences(self, include_deleted: bool = False) -> list[Experience]:
        return [
            e for e in self.experiences.values()
            if include_deleted or e.is_active
        ]
