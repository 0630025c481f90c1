"""Central registry for prompt templates."""

import logging
from pathlib import Path
from typing import Any

from story_ledger.utils.exceptions import PromptTemplateError
from story_ledger.utils.prompt_template import PromptTemplate

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATES_DIR = Path(__file__).parent.parent / "prompts" / "templates"


class PromptRegistry:
    """Loads every YAML template under a directory, keyed by agent/task.

    Templates are organized in directories by agent role:
    ```
    prompts/templates/
    ├── extractor/
    │   ├── system.yaml
    │   └── extract_ledger.yaml
    ├── compressor/
    ├── reviewer/
    └── reviser/
    ```
    """

    def __init__(self, templates_dir: Path | str | None = None):
        """Initialize registry and load all templates.

        Args:
            templates_dir: Directory containing template YAML files.
                Defaults to the package's prompts/templates.
        """
        self.templates_dir = Path(templates_dir) if templates_dir else DEFAULT_TEMPLATES_DIR
        self._templates: dict[str, PromptTemplate] = {}
        self._load_all_templates()

    @staticmethod
    def _make_key(agent: str, task: str) -> str:
        return f"{agent}/{task}"

    def _load_all_templates(self) -> None:
        if not self.templates_dir.exists():
            logger.warning(f"Templates directory not found: {self.templates_dir}")
            return

        errors = 0
        for yaml_file in sorted(self.templates_dir.rglob("*.yaml")):
            try:
                template = PromptTemplate.from_yaml(yaml_file)
            except PromptTemplateError as e:
                logger.error(f"Failed to load template {yaml_file}: {e}")
                errors += 1
                continue

            key = self._make_key(template.agent, template.task)
            if key in self._templates:
                logger.warning(f"Duplicate template key '{key}', overwriting with {yaml_file}")
            self._templates[key] = template

        logger.info(f"Loaded {len(self._templates)} templates from {self.templates_dir}, {errors} errors")

    def get(self, agent: str, task: str) -> PromptTemplate:
        """Get a template by agent and task.

        Raises:
            PromptTemplateError: If template not found.
        """
        key = self._make_key(agent, task)
        template = self._templates.get(key)
        if template is None:
            raise PromptTemplateError(
                f"Template not found: {key}. Available templates: {self.list_templates()}"
            )
        return template

    def render(self, agent: str, task: str, **kwargs: Any) -> str:
        """Render a template with variables.

        Raises:
            PromptTemplateError: If template not found or rendering fails.
        """
        return self.get(agent, task).render(**kwargs)

    def render_system(self, agent: str, **kwargs: Any) -> str:
        """Render the system prompt template (task="system") for an agent."""
        return self.render(agent, "system", **kwargs)

    def has_template(self, agent: str, task: str) -> bool:
        """Check if a template exists."""
        return self._make_key(agent, task) in self._templates

    def get_hash(self, agent: str, task: str) -> str:
        """Get the hash of a template."""
        return self.get(agent, task).get_hash()

    def list_templates(self) -> list[str]:
        """Sorted list of "agent/task" keys."""
        return sorted(self._templates.keys())

    def __len__(self) -> int:
        """Return number of loaded templates."""
        return len(self._templates)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"PromptRegistry({len(self._templates)} templates from {self.templates_dir})"
