"""
Prompt class -- coordinates templates, input variables, and rendering.
"""

from __future__ import annotations
from jinja2 import Environment, StrictUndefined, meta, Template, TemplateSyntaxError
from pathlib import Path
import logging

from mapreducer.domain.exceptions.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# Throw on undefined variables rather than rendering empty strings
env = Environment(undefined=StrictUndefined)


DEFAULT_MAP_PROMPT = """
Summarize the following content. Preserve key facts, entities, figures and sources.
Do not invent information. Answer with the summary only, so it can be combined with
other summaries later.

<content>
{{ text }}
</content>
""".strip()

DEFAULT_COMBINE_PROMPT = """
The following are summaries of consecutive parts of one larger text, separated by "---".
Combine them into a single coherent summary. Merge duplicates, keep every distinct fact
and source, and do not invent information. Answer with the combined summary only.

<summaries>
{{ text }}
</summaries>
""".strip()


class Prompt:
    """
    Takes a jinja2 ready string and renders it with input variables.
    Map and combine prompts are rendered with a single `text` variable.
    """

    def __init__(self, prompt_string: str):
        if not prompt_string or not prompt_string.strip():
            raise ConfigurationError("Prompt template must not be empty")
        self.prompt_string: str = prompt_string
        try:
            self.template: Template = env.from_string(prompt_string)
        except TemplateSyntaxError as e:
            raise ConfigurationError(f"Invalid prompt template: {e}") from e
        self.input_schema: set[str] = self._get_input_schema()

    def _get_input_schema(self) -> set[str]:
        """
        Returns the set of variable names referenced by the template.
        """
        parsed_content = env.parse(self.prompt_string)
        return meta.find_undeclared_variables(parsed_content)

    def require(self, *variables: str) -> Prompt:
        """
        Assert that the template references every given variable.
        """
        missing = set(variables) - self.input_schema
        if missing:
            raise ConfigurationError(
                f"Prompt template is missing variables: {sorted(missing)}"
            )
        return self

    def render(self, input_variables: dict[str, str]) -> str:
        return self.template.render(**input_variables)

    @classmethod
    def from_file(cls, filename: str | Path) -> Prompt:
        """
        Creates a Prompt object from a .jinja2 / .jinja file.
        """
        filename = Path(filename)
        if not filename.exists():
            raise FileNotFoundError(f"Prompt file {filename} does not exist.")
        if filename.suffix not in {".jinja2", ".jinja"}:
            raise ValueError(
                f"Prompt file {filename} must be a .jinja2 or .jinja file."
            )
        return cls(filename.read_text())

    def __repr__(self) -> str:
        return f"Prompt(input_schema={sorted(self.input_schema)})"
