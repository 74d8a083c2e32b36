"""
Tests for form extraction and synthesis.

Run:
    pytest tests/test_forms.py -v
"""

from .conftest import KWIK_URL
from pahedl.forms import extract_form_markup, synthesize_form


def test_extract_form_markup_spans_newlines():
    decoded = (
        "$('#x').html('');\n"
        '<form action="/d/token1" method="POST">\n'
        '  <input name="id" value="42">\n'
        "</form>\n"
        "document.forms[0].submit();"
    )
    markup = extract_form_markup(decoded)
    assert markup.startswith("<form")
    assert markup.endswith("</form>")
    assert '<input name="id" value="42">' in markup


def test_extract_form_markup_missing():
    assert extract_form_markup("var a = 1;") is None
    assert extract_form_markup("<form action='/x'>never closed") is None
    assert extract_form_markup("") is None


def test_synthesize_scenario_b():
    form = synthesize_form('<form action="/d/token1"><input name="id" value="42"></form>', KWIK_URL)
    assert form.action_url == "/d/token1"
    assert form.fields == [("id", "42")]


def test_synthesize_keeps_document_order_and_skips_unnamed():
    markup = """<form action="https://kwik.si/d/abc" method="POST">
      <input type="hidden" name="_token" value="t0k3n">
      <input type="submit" value="Download">
      <select name="quality"><option value="720">720p</option></select>
      <textarea name="note">ignored body</textarea>
      <input name="" value="empty-name">
      <input name="flag">
      <input name="_token" value="again">
    </form>"""
    form = synthesize_form(markup, KWIK_URL)
    assert form.action_url == "https://kwik.si/d/abc"
    assert form.fields == [
        ("_token", "t0k3n"),
        ("quality", ""),
        ("note", ""),
        ("flag", ""),
        ("_token", "again"),
    ]


def test_synthesize_falls_back_to_page_url():
    form = synthesize_form('<form method="POST"><input name="id" value="1"></form>', KWIK_URL)
    assert form.action_url == KWIK_URL


def test_synthesize_without_form_element():
    assert synthesize_form("<div><input name='id' value='1'></div>", KWIK_URL) is None
