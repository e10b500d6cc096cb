"""Tests to verify required dependencies are available."""


def test_click_import():
    """Test that click can be imported."""
    import click
    assert click is not None


def test_lxml_import():
    """Test that lxml can be imported."""
    import lxml
    assert lxml is not None


def test_lxml_html_builder_import():
    """The executive report builds its document with lxml.html.builder."""
    from lxml.html import builder
    assert builder.HTML is not None
