"""YAML-based prompt template system with Jinja2 rendering."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, StrictUndefined, TemplateSyntaxError, UndefinedError

from story_ledger.utils.exceptions import PromptTemplateError

logger = logging.getLogger(__name__)


@dataclass
class PromptTemplate:
    """A YAML-based prompt template with Jinja2 rendering.

    Attributes:
        name: Unique template name (e.g., "extract_ledger").
        version: Template version for tracking changes.
        description: Human-readable description of the template's purpose.
        agent: Agent role this template belongs to (e.g., "extractor").
        task: Task identifier (e.g., "system", "extract_ledger").
        template: Jinja2 template string.
        required_variables: Variables that must be provided.
        optional_variables: Variables that default to None when omitted.
    """

    name: str
    version: str
    description: str
    agent: str
    task: str
    template: str
    required_variables: list[str] = field(default_factory=list)
    optional_variables: list[str] = field(default_factory=list)

    _hash: str | None = field(default=None, repr=False, compare=False)
    _jinja_env: Environment = field(
        default_factory=lambda: Environment(undefined=StrictUndefined, trim_blocks=True),
        repr=False,
        compare=False,
    )

    def render(self, **kwargs: Any) -> str:
        """Render the template with variables.

        Raises:
            PromptTemplateError: If required variables are missing or rendering fails.
        """
        missing = set(self.required_variables) - set(kwargs.keys())
        if missing:
            raise PromptTemplateError(
                f"Missing required variables for template '{self.name}': {sorted(missing)}"
            )

        for var in self.optional_variables:
            kwargs.setdefault(var, None)

        try:
            rendered = self._jinja_env.from_string(self.template).render(**kwargs)
        except UndefinedError as e:
            raise PromptTemplateError(f"Undefined variable in template '{self.name}': {e}") from e
        except TemplateSyntaxError as e:
            raise PromptTemplateError(f"Syntax error in template '{self.name}': {e}") from e

        logger.debug(f"Rendered template '{self.name}' v{self.version} ({len(rendered)} chars)")
        return rendered

    def get_hash(self) -> str:
        """MD5 hash of version and template text, for usage tracking."""
        if self._hash is None:
            content = f"{self.version}:{self.template}"
            self._hash = hashlib.md5(content.encode()).hexdigest()
        return self._hash

    def validate(self) -> list[str]:
        """Validate template structure and syntax.

        Returns:
            List of validation error messages (empty if valid).
        """
        errors = []
        for attr in ("name", "version", "agent", "task", "template"):
            if not getattr(self, attr):
                errors.append(f"Template {attr} is required")

        try:
            self._jinja_env.parse(self.template)
        except TemplateSyntaxError as e:
            errors.append(f"Invalid Jinja2 syntax: {e}")

        return errors

    @classmethod
    def from_yaml(cls, path: Path) -> PromptTemplate:
        """Load a template from a YAML file.

        Expected YAML structure:
        ```yaml
        name: extract_ledger
        version: "1.0"
        description: "Extracts per-character state from one unit"
        agent: extractor
        task: extract_ledger
        template: |
          Unit {{ unit_index }}: ...
        variables:
          required: [unit_index]
          optional: [unit_title]
        ```

        Raises:
            PromptTemplateError: If the file cannot be read, parsed or validated.
        """
        if not path.exists():
            raise PromptTemplateError(f"Template file not found: {path}")

        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise PromptTemplateError(f"Invalid YAML in {path}: {e}") from e
        except OSError as e:
            raise PromptTemplateError(f"Cannot read template file {path}: {e}") from e

        if not isinstance(data, dict):
            raise PromptTemplateError(f"Invalid template format in {path}: expected dict")
        if "version" not in data:
            raise PromptTemplateError(f"Missing required 'version' field in {path}")

        variables = data.get("variables") or {}
        if not isinstance(variables, dict):
            raise PromptTemplateError(f"Invalid 'variables' in {path}: expected dict")
        required_vars = variables.get("required") or []
        optional_vars = variables.get("optional") or []
        if not isinstance(required_vars, list) or not isinstance(optional_vars, list):
            raise PromptTemplateError(f"Invalid 'variables' lists in {path}")

        template = cls(
            name=data.get("name", path.stem),
            version=str(data["version"]),
            description=data.get("description", ""),
            agent=data.get("agent", ""),
            task=data.get("task", path.stem),
            template=data.get("template", ""),
            required_variables=required_vars,
            optional_variables=optional_vars,
        )

        errors = template.validate()
        if errors:
            raise PromptTemplateError(f"Invalid template in {path}: {'; '.join(errors)}")

        logger.debug(f"Loaded template '{template.name}' v{template.version} from {path}")
        return template

    def __str__(self) -> str:
        """Return string representation."""
        return f"PromptTemplate({self.agent}/{self.task} v{self.version})"
