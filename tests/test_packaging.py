"""Tests for project metadata."""

from pathlib import Path

PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


class TestPyproject:
    def test_long_description_is_not_a_design_doc(self) -> None:
        """The package metadata does not publish internal planning documents."""
        text = PYPROJECT.read_text(encoding="utf-8")
        assert "SPEC_FULL" not in text
        assert 'readme = "DESIGN.md"' not in text

    def test_console_script(self) -> None:
        text = PYPROJECT.read_text(encoding="utf-8")
        assert 'devrag = "devrag.cli:app"' in text
