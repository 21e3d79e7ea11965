"""Template rendering engine for generated configuration files.

Built-in templates live alongside this module. Operators may shadow any of
them by placing a file with the same relative name under the configured
``templates_dir``.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TemplateEngine:
    """Thin wrapper over a Jinja2 environment with strict variables."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: str | os.PathLike[str] | None) -> TemplateEngine:
        """Return an engine that prefers templates found in *override_dir*."""
        loaders = []
        if override_dir is not None and Path(override_dir).is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("domainctl", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            autoescape=False,  # noqa: S701 - renders nginx config, not HTML
            keep_trailing_newline=True,
        )
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        template = self.environment.get_template(template_name)
        return template.render(**context)

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render to *destination*; return ``True`` when the file content changed.

        The file is always (re)written so the requested *mode* applies even
        when the content is unchanged.
        """
        rendered = self.render_to_string(template_name, context)
        changed = True
        if destination.exists():
            changed = destination.read_text(encoding="utf-8") != rendered
        destination.write_text(rendered, encoding="utf-8")
        destination.chmod(mode)
        LOGGER.debug("Rendered %s to %s (changed=%s)", template_name, destination, changed)
        return changed


__all__ = ["TemplateEngine"]
