# src/ispstack/host/templates.py

from __future__ import annotations

import shlex
from pathlib import Path
from typing import Any, Dict, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .files import write_if_changed

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / "templates"


class JinjaTemplateRenderer:
    """
    Renders the shipped *.j2 templates. A missing variable is an error,
    never an empty string in a config file.
    """

    def __init__(self, templates_dir: Path = TEMPLATES_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["shquote"] = shlex.quote

    def render(self, template_id: str, variables: Dict[str, Any]) -> str:
        tmpl = self.env.get_template(template_id)
        return tmpl.render(**variables)

    def write(
        self,
        template_id: str,
        variables: Dict[str, Any],
        target: Path,
        *,
        mode: Optional[int] = None,
    ) -> bool:
        return write_if_changed(Path(target), self.render(template_id, variables), mode=mode)
