import json
import re
from dataclasses import fields

from permitdesk.dashboard import FIELDS, STATUSES, render_dashboard
from permitdesk.store import Permit


def _embedded_fields(page):
    match = re.search(r"const FIELDS = (\[.*?\]);\n", page, re.DOTALL)
    assert match is not None
    return json.loads(match.group(1))


def test_page_is_html_document():
    page = render_dashboard()
    assert page.startswith("<!DOCTYPE html>")
    assert page.rstrip().endswith("</html>")
    assert "<title>Permit</title>" in page


def test_page_is_stable_between_calls():
    first = render_dashboard()
    second = render_dashboard()
    assert first.count("<html") == 1
    assert second.count("</html>") == 1
    assert len(first) == len(second)
    assert _embedded_fields(first) == _embedded_fields(second)
    assert [f["name"] for f in _embedded_fields(second)][0] == "permit_type"


def test_embedded_fields_cover_editable_permit_columns():
    names = [f["name"] for f in _embedded_fields(render_dashboard())]
    editable = [f.name for f in fields(Permit) if f.name not in ("id", "created_at")]
    assert names == editable


def test_embedded_fields_match_definitions():
    embedded = _embedded_fields(render_dashboard())
    assert [f["label"] for f in embedded] == [f.label for f in FIELDS]
    required = [f["name"] for f in embedded if f["required"]]
    assert required == ["permit_type", "holder_name"]
    status = next(f for f in embedded if f["name"] == "status")
    assert status["kind"] == "select"
    assert status["options"] == list(STATUSES)


def test_status_filter_lists_every_status():
    page = render_dashboard()
    for status in ("Active", "Pending", "Expired", "Revoked", "Suspended"):
        assert f'<option value="{status}">{status}</option>' in page
    assert '<option value="">All Status</option>' in page


def test_table_headers_follow_fields():
    page = render_dashboard()
    for f in FIELDS:
        assert f"<th>{f.label}</th>" in page
    assert page.count("<th>") == len(FIELDS) + 1


def test_page_calls_the_api_routes():
    page = render_dashboard()
    for route in ("/license/activate", "/tier", "/config", "/extras/"):
        assert route in page
    assert 'const API = "/api";' in page
    assert 'const RESOURCE = "permits";' in page


def test_page_has_no_unfilled_placeholder_or_external_links():
    page = render_dashboard()
    assert "__FIELDS__" not in page
    assert "https://" not in page
    assert "http://" not in page


def test_script_tags_are_balanced():
    page = render_dashboard()
    assert page.count("<script>") == 1
    assert page.count("</script>") == 1
    start = page.index("<script>")
    assert "</" not in page[start + len("<script>"):page.index("</script>")].replace(
        "</", "", 0
    ) or page.index("</script>") > start


def test_license_controls_present():
    page = render_dashboard()
    assert 'id="trial-key-input"' in page
    assert 'id="trial-activate-btn"' in page
    assert 'placeholder="SY-..."' in page