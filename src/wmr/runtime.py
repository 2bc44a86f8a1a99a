"""
Engine runtime — wires configuration, templates, privileges and state.

The library pieces take their collaborators as arguments. The runtime is
the one place that builds the default set of them from ``WMR_HOME`` for
the command line and other front ends.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from . import WMR_HOME
from .config import EngineConfig, load_config
from .context import MachineContext, current_context
from .engine import resolve
from .models import ResolvedConfiguration
from .privilege import PrivilegeModel, PromptStrategy
from .state.router import StateStoreRouter, open_state_store
from .templates.schema import Template, ValidationLevel
from .templates.store import TemplateStore

logger = logging.getLogger("wmr.runtime")


class EngineRuntime:
    """Default collaborators for one WMR home directory.

    Args:
        home: Override WMR home directory. Defaults to ``WMR_HOME``.
        prompt: Elevation prompt strategy, ignored when the config sets
            ``no_prompt``.
        config: Use this configuration instead of loading config.yaml.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        prompt: Optional[PromptStrategy] = None,
        config: Optional[EngineConfig] = None,
    ):
        self.home = Path(home or WMR_HOME).expanduser()
        self.config = config or load_config(self.home)
        self.templates = TemplateStore(home=self.home, extra_dirs=self.config.template_dirs)
        self.privileges = PrivilegeModel(prompt=None if self.config.no_prompt else prompt)
        self._store: Optional[StateStoreRouter] = None

    @property
    def store(self) -> StateStoreRouter:
        if self._store is None:
            self._store = open_state_store(self.config, privileges=self.privileges)
        return self._store

    def context(self, machine_name: Optional[str] = None, hostname: Optional[str] = None) -> MachineContext:
        """Snapshot this machine, with identity overrides from config or caller."""
        return current_context(
            machine_name=machine_name or self.config.machine_name,
            hostname=hostname or self.config.hostname,
            privileges=self.privileges,
        )

    def resolve(
        self,
        template: Union[str, Path, Template],
        validation_level: Optional[Union[ValidationLevel, str]] = None,
        context: Optional[MachineContext] = None,
    ) -> ResolvedConfiguration:
        """Open a template by key or path and resolve it for this machine.

        The level falls back to the configured one only when the template
        does not set its own.
        """
        if not isinstance(template, Template):
            template = self.templates.open(template)
        if validation_level is None and "validation_level" not in template.configuration.model_fields_set:
            validation_level = self.config.validation_level
        return resolve(template, context or self.context(), validation_level=validation_level)


def get_runtime(home: Optional[Path] = None, prompt: Optional[PromptStrategy] = None) -> EngineRuntime:
    """Create the engine runtime for ``home``."""
    runtime = EngineRuntime(home=home, prompt=prompt)
    logger.debug("Runtime at %s (%d template dirs)", runtime.home, len(runtime.templates.search_paths))
    return runtime
