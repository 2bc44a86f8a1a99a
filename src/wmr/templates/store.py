"""
Template Store — loads, validates, discovers and saves templates.

Searches locations in priority order:
1. Extra directories from config (``template_dirs``)
2. User templates:     ~/.wmr/templates/
3. Built-in templates: shipped with the wmr package

A malformed document is never turned into a partial template: parse and
schema failures raise, and directory scans skip the file with a warning.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from .. import WMR_HOME
from ..errors import TemplateError, TemplateNotFoundError, TemplateParseError, TemplateSchemaError
from .schema import Template

logger = logging.getLogger("wmr.templates")

_BUILTIN_DIR = Path(__file__).parent / "builtins"

TEMPLATE_SUFFIXES = (".yaml", ".yml", ".json")


def validate_schema(template: Union[Template, dict[str, Any]], path: Optional[str] = None) -> None:
    """Check the minimum template schema: a non-empty ``metadata.name``.

    Fatal at every validation level.

    Raises:
        TemplateSchemaError: If the name is missing or blank.
    """
    if isinstance(template, Template):
        name = template.metadata.name
    else:
        metadata = template.get("metadata")
        if not isinstance(metadata, dict):
            raise TemplateSchemaError("metadata", "a 'metadata' mapping is required", path=path)
        name = metadata.get("name")

    if not isinstance(name, str) or not name.strip():
        raise TemplateSchemaError("metadata.name", path=path)


def parse_template(text: str, path: Optional[str] = None) -> Template:
    """Parse and validate a template document from text.

    Raises:
        TemplateParseError: Malformed YAML/JSON or a non-mapping document.
        TemplateSchemaError: Missing name or any field failing the schema.
    """
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        problem = getattr(exc, "problem", None) or str(exc)
        raise TemplateParseError(
            problem,
            path=path,
            line=mark.line + 1 if mark else None,
            column=mark.column + 1 if mark else None,
        ) from exc

    if not isinstance(raw, dict):
        raise TemplateParseError(f"expected a mapping, got {type(raw).__name__}", path=path)

    validate_schema(raw, path=path)

    try:
        template = Template.model_validate({**raw, "source_path": path})
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "<root>"
        raise TemplateSchemaError(field, first["msg"], path=path) from exc

    validate_schema(template, path=path)
    return template


def load_template(path: Union[str, Path]) -> Template:
    """Load a template file.

    Args:
        path: YAML or JSON template file.

    Returns:
        The validated, immutable Template.

    Raises:
        TemplateNotFoundError: If the file does not exist.
        TemplateParseError: If the document is malformed.
        TemplateSchemaError: If it fails the schema.
    """
    file_path = Path(path).expanduser()
    if not file_path.is_file():
        raise TemplateNotFoundError(str(file_path))
    try:
        text = file_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise TemplateParseError(str(exc), path=str(file_path)) from exc

    template = parse_template(text, path=str(file_path))
    logger.debug("Loaded template '%s' from %s", template.name, file_path)
    return template


def dump_template(template: Template, path: Union[str, Path]) -> Path:
    """Write a template back to disk as YAML."""
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    data = template.model_dump(mode="json", exclude_none=True)
    target.write_text(
        yaml.safe_dump(data, default_flow_style=False, sort_keys=False),
        encoding="utf-8",
    )
    return target


class TemplateStore:
    """Discovers and loads templates by key (file stem).

    Args:
        home: WMR home directory (default ``WMR_HOME``).
        extra_dirs: Additional directories searched before the user dir.
        include_builtins: Whether to search the packaged templates.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        extra_dirs: Iterable[Path] = (),
        include_builtins: bool = True,
    ) -> None:
        self._home = Path(home or WMR_HOME).expanduser()
        self._extra_dirs = [Path(d).expanduser() for d in extra_dirs]
        self._include_builtins = include_builtins
        self._cache: dict[str, Template] = {}
        self._paths: dict[str, Path] = {}

    @property
    def search_paths(self) -> list[Path]:
        """Template directories in priority order."""
        paths = self._extra_dirs + [self._home / "templates"]
        if self._include_builtins:
            paths.append(_BUILTIN_DIR)
        return paths

    def scan(self) -> dict[str, Template]:
        """Scan every search path; earlier paths shadow later ones.

        Returns:
            Dict mapping template key to Template.
        """
        found: dict[str, Template] = {}
        paths: dict[str, Path] = {}

        # Lowest priority first so higher-priority directories overwrite.
        for search_dir in reversed(self.search_paths):
            if not search_dir.is_dir():
                continue
            for file_path in sorted(search_dir.iterdir()):
                if file_path.suffix.lower() not in TEMPLATE_SUFFIXES:
                    continue
                try:
                    template = load_template(file_path)
                except TemplateError as exc:
                    logger.warning("Skipping %s: %s", file_path, exc)
                    continue
                found[file_path.stem] = template
                paths[file_path.stem] = file_path

        self._cache = found
        self._paths = paths
        return found

    def list_templates(self) -> list[tuple[str, Template]]:
        """All discovered templates as (key, template), sorted by key."""
        if not self._cache:
            self.scan()
        return sorted(self._cache.items())

    def get(self, key: str) -> Optional[Template]:
        """Get a template by key, or None."""
        if not self._cache:
            self.scan()
        return self._cache.get(key)

    def path_of(self, key: str) -> Optional[Path]:
        if not self._paths:
            self.scan()
        return self._paths.get(key)

    def open(self, key_or_path: Union[str, Path]) -> Template:
        """Load by file path if it exists, else by key.

        Raises:
            TemplateNotFoundError: If neither resolves.
        """
        candidate = Path(key_or_path).expanduser()
        if candidate.is_file():
            return load_template(candidate)
        template = self.get(str(key_or_path))
        if template is None:
            raise TemplateNotFoundError(str(key_or_path))
        return template

    def save(self, key: str, template: Template) -> Path:
        """Save a template into the user template directory."""
        target = dump_template(template, self._home / "templates" / f"{key}.yaml")
        self._cache[key] = template
        self._paths[key] = target
        return target
