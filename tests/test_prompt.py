import pytest
from jinja2 import UndefinedError

from mapreducer.core.prompt.prompt import (
    DEFAULT_COMBINE_PROMPT,
    DEFAULT_MAP_PROMPT,
    Prompt,
)
from mapreducer.domain.exceptions.exceptions import ConfigurationError


def test_render_substitutes_text():
    prompt = Prompt("Summarize: {{ text }}")
    assert prompt.render({"text": "hello"}) == "Summarize: hello"
    assert prompt.input_schema == {"text"}


def test_undefined_variable_raises():
    prompt = Prompt("{{ text }} by {{ author }}")
    with pytest.raises(UndefinedError):
        prompt.render({"text": "hello"})


def test_require_reports_missing_variables():
    with pytest.raises(ConfigurationError, match="text"):
        Prompt("Summarize {{ body }}").require("text")


@pytest.mark.parametrize("template", ["", "   ", "{{ text "])
def test_invalid_templates_rejected(template):
    with pytest.raises(ConfigurationError):
        Prompt(template)


@pytest.mark.parametrize("template", [DEFAULT_MAP_PROMPT, DEFAULT_COMBINE_PROMPT])
def test_default_prompts_take_text(template):
    rendered = Prompt(template).require("text").render({"text": "MARKER"})
    assert "MARKER" in rendered


def test_from_file(tmp_path):
    path = tmp_path / "map.jinja2"
    path.write_text("Digest {{ text }}")
    assert Prompt.from_file(path).render({"text": "x"}) == "Digest x"


def test_from_file_rejects_other_suffixes(tmp_path):
    path = tmp_path / "map.txt"
    path.write_text("Digest {{ text }}")
    with pytest.raises(ValueError):
        Prompt.from_file(path)


def test_from_file_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        Prompt.from_file(tmp_path / "missing.jinja2")
