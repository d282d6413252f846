"""
Docket: Case Timeline Service
Timeline Template Registry.

YAML-based catalog of phase sequences keyed by case type, with:
    - Validation at load (contiguous orders from 1, unique names per catalog)
    - Free-form case type resolution via alias keywords
    - Whole-catalog atomic swap on reload

File format::

    templates:
      - case_type: Personal Injury
        aliases: [auto accident, slip and fall]
        phases:
          - {order: 1, name: Intake, expected_duration_days: 7}
          - {order: 2, name: Treatment}

Usage:
    from docket.services.template_registry import get_registry
    registry = get_registry()
    template = registry.get_template("Personal Injury")
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from flask import current_app

from docket.core.exceptions import TemplateConfigError, TemplateNotFoundError

logger = logging.getLogger(__name__)

EXTENSION_KEY = "timeline_templates"


@dataclass(frozen=True)
class PhaseDefinition:
    """One ordered step of a template."""

    order: int
    name: str
    expected_duration_days: int | None = None
    description: str | None = None
    icon: str | None = None
    color: str | None = None

    def to_dict(self) -> dict:
        return {
            "order": self.order,
            "name": self.name,
            "expected_duration_days": self.expected_duration_days,
            "description": self.description,
            "icon": self.icon,
            "color": self.color,
        }


@dataclass(frozen=True)
class TimelineTemplate:
    """Ordered phases governing every case of one case type."""

    case_type: str
    phases: tuple[PhaseDefinition, ...]
    aliases: tuple[str, ...] = field(default_factory=tuple)
    description: str | None = None

    @property
    def phase_count(self) -> int:
        return len(self.phases)

    def phase(self, order: int) -> PhaseDefinition | None:
        if 1 <= order <= len(self.phases):
            return self.phases[order - 1]
        return None

    def to_dict(self) -> dict:
        return {
            "case_type": self.case_type,
            "description": self.description,
            "aliases": list(self.aliases),
            "phases": [p.to_dict() for p in self.phases],
        }


# ── Parsing & validation ─────────────────────────────────────────────────────


def _parse_phase(raw, case_type: str, source: str | None) -> PhaseDefinition:
    if not isinstance(raw, dict):
        raise TemplateConfigError(f"{case_type}: phase entries must be mappings", source)
    try:
        order = int(raw["order"])
    except (KeyError, TypeError, ValueError):
        raise TemplateConfigError(f"{case_type}: every phase needs an integer 'order'", source)
    name = str(raw.get("name") or "").strip()
    if not name:
        raise TemplateConfigError(f"{case_type}: phase {order} has no name", source)
    duration = raw.get("expected_duration_days")
    if duration is not None:
        try:
            duration = int(duration)
        except (TypeError, ValueError):
            raise TemplateConfigError(
                f"{case_type}: phase {order} expected_duration_days must be an integer", source,
            )
        if duration < 0:
            raise TemplateConfigError(
                f"{case_type}: phase {order} expected_duration_days must be >= 0", source,
            )
    return PhaseDefinition(
        order=order,
        name=name,
        expected_duration_days=duration,
        description=raw.get("description"),
        icon=raw.get("icon"),
        color=raw.get("color"),
    )


def parse_templates(data, source: str | None = None) -> dict[str, TimelineTemplate]:
    """
    Build a validated, insertion-ordered catalog from decoded YAML/JSON data.

    Raises:
        TemplateConfigError: on any structural or ordering violation.
    """
    if not isinstance(data, dict) or not isinstance(data.get("templates"), list):
        raise TemplateConfigError("top-level 'templates' list is required", source)

    catalog: dict[str, TimelineTemplate] = {}
    seen_lower: set[str] = set()
    for raw in data["templates"]:
        if not isinstance(raw, dict):
            raise TemplateConfigError("template entries must be mappings", source)
        case_type = str(raw.get("case_type") or "").strip()
        if not case_type:
            raise TemplateConfigError("template without case_type", source)
        if case_type.lower() in seen_lower:
            raise TemplateConfigError(f"duplicate case_type {case_type!r}", source)
        seen_lower.add(case_type.lower())

        raw_phases = raw.get("phases") or []
        if not raw_phases:
            raise TemplateConfigError(f"{case_type}: template has no phases", source)
        phases = sorted(
            (_parse_phase(p, case_type, source) for p in raw_phases),
            key=lambda p: p.order,
        )
        orders = [p.order for p in phases]
        if orders != list(range(1, len(phases) + 1)):
            raise TemplateConfigError(
                f"{case_type}: phase orders must be unique and contiguous from 1, got {orders}",
                source,
            )

        aliases = tuple(str(a).strip().lower() for a in raw.get("aliases") or [] if str(a).strip())
        catalog[case_type] = TimelineTemplate(
            case_type=case_type,
            phases=tuple(phases),
            aliases=aliases,
            description=raw.get("description"),
        )
    return catalog


def load_template_file(path: str | Path) -> dict[str, TimelineTemplate]:
    """Read and validate a YAML catalog file."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise TemplateConfigError(f"cannot read template file: {exc}", str(path)) from exc
    except yaml.YAMLError as exc:
        raise TemplateConfigError(f"invalid YAML: {exc}", str(path)) from exc
    return parse_templates(data, source=path.name)


# ── Registry ─────────────────────────────────────────────────────────────────


class TemplateRegistry:
    """
    Read-mostly catalog of timeline templates.

    A catalog dict is never mutated once installed. Loading builds and
    validates a complete new catalog, then replaces ``_state`` under
    ``_swap_lock``; readers take ``_state`` once per call and so see either
    the old or the new catalog.
    """

    def __init__(self, path: str | Path | None = None, fallback_case_type: str | None = None):
        self._path = Path(path) if path else None
        self._fallback = fallback_case_type
        self._swap_lock = threading.Lock()
        # (catalog, lower-cased key -> canonical key), replaced as one tuple
        self._state: tuple[dict[str, TimelineTemplate], dict[str, str]] = ({}, {})
        if self._path:
            self.load_file(self._path)

    # ── Loading ──────────────────────────────────────────────────────────

    def load_file(self, path: str | Path) -> int:
        """Validate ``path`` and swap it in. Returns the number of templates."""
        catalog = load_template_file(path)
        with self._swap_lock:
            self._path = Path(path)
            self._install(catalog)
        logger.info("Loaded %d timeline template(s) from %s", len(catalog), Path(path).name)
        return len(catalog)

    def load_mapping(self, data) -> int:
        """Validate an already-decoded catalog and swap it in."""
        catalog = parse_templates(data, source="<mapping>")
        with self._swap_lock:
            self._install(catalog)
        return len(catalog)

    def reload(self) -> int:
        """Re-read the backing file. The previous catalog survives a failed reload."""
        if self._path is None:
            raise TemplateConfigError("registry has no backing file to reload")
        return self.load_file(self._path)

    def _install(self, catalog: dict[str, TimelineTemplate]) -> None:
        self._state = (catalog, {name.lower(): name for name in catalog})

    @property
    def fallback_case_type(self) -> str | None:
        return self._fallback

    @property
    def path(self) -> Path | None:
        return self._path

    # ── Lookups ──────────────────────────────────────────────────────────

    def list_case_types(self) -> list[str]:
        return list(self._state[0])

    def get_template(self, case_type: str) -> TimelineTemplate:
        catalog, by_lower = self._state
        template = catalog.get(case_type)
        if template is None and case_type:
            canonical = by_lower.get(case_type.strip().lower())
            template = catalog.get(canonical) if canonical else None
        if template is None:
            raise TemplateNotFoundError(case_type)
        return template

    def resolve_case_type(self, raw: str | None) -> str:
        """
        Map a free-form case type onto a canonical template key.

        Exact (case-insensitive) match first, then alias keywords in catalog
        order, then the configured fallback.
        """
        catalog, by_lower = self._state
        text = (raw or "").strip()
        if text:
            canonical = by_lower.get(text.lower())
            if canonical:
                return canonical
            normalized = re.sub(r"[_\-]+", " ", text.lower())
            for template in catalog.values():
                for alias in template.aliases:
                    if re.search(rf"\b{re.escape(alias)}\b", normalized):
                        return template.case_type
        if self._fallback and self._fallback in catalog:
            logger.info("No template for case type %r, using fallback %r", raw, self._fallback)
            return self._fallback
        raise TemplateNotFoundError(raw)

    def __len__(self) -> int:
        return len(self._state[0])


def init_template_registry(app) -> TemplateRegistry:
    """Build the app's registry from config and store it in ``app.extensions``."""
    registry = TemplateRegistry(
        path=app.config.get("TIMELINE_TEMPLATES_PATH"),
        fallback_case_type=app.config.get("TIMELINE_FALLBACK_CASE_TYPE"),
    )
    app.extensions[EXTENSION_KEY] = registry
    return registry


def get_registry(app=None) -> TemplateRegistry:
    """Return the registry bound to ``app`` (default: the current app)."""
    app = app or current_app
    return app.extensions[EXTENSION_KEY]
