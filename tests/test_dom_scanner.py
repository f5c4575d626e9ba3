import asyncio

from fakes import FakeElement, FakeFrame, FakePage

from autofill_agent.agent.browser import list_contexts
from autofill_agent.agent.dom_scanner import scan_all, scan_context, scan_each
from autofill_agent.models import WidgetKind


def _encounter_frame():
    return FakeFrame(
        "https://emr.example.com/encounter",
        [
            FakeElement("input", id="dob", label_for="Date of Birth", title="ignored"),
            FakeElement("input", id="csrf", type="hidden", value="t0k3n"),
            FakeElement(
                "select",
                id="sex",
                previous_cell="Sex:",
                options=[("", "-- choose --"), ("M", "Male"), ("F", "Female")],
            ),
            FakeElement("textarea", name="reason", placeholder="Reason for visit"),
            FakeElement("input", id="collapsed", visible=False),
            FakeElement("input"),
        ],
    )


def test_scan_context_keeps_visible_fields_with_signal():
    schema = asyncio.run(scan_context(_encounter_frame()))

    assert schema.context_location == "https://emr.example.com/encounter"
    assert schema.keys() == ["dob", "sex", "reason"]
    dob, sex, reason = schema.fields
    assert dob.label == "Date of Birth"
    assert dob.widget_kind is WidgetKind.TEXT
    assert sex.widget_kind is WidgetKind.SELECT
    assert sex.label == "Sex:"
    assert sex.options == ("Male", "Female")
    assert reason.identity.primary_id == ""
    assert reason.key == "reason"
    assert reason.input_type == "textarea"


def test_scan_all_merges_contexts_in_enumeration_order():
    main = FakeFrame("https://emr.example.com/main", [FakeElement("input", id="search", title="Search")])
    child = _encounter_frame()
    detached = FakeFrame("https://emr.example.com/old", [FakeElement("input", id="stale", title="x")], detached=True)
    page = FakePage(main, child, detached)

    assert list_contexts(page) == [main, child]

    schema = asyncio.run(scan_all(page))

    assert schema.keys() == ["search", "dob", "sex", "reason"]
    assert schema.context_location == "https://emr.example.com/main"
    prompt_fields = schema.to_prompt_fields()
    assert prompt_fields[2]["options"] == ["Male", "Female"]
    assert "options" not in prompt_fields[1]


def test_failed_context_is_folded_out(caplog):
    main = FakeFrame("https://emr.example.com/main", [FakeElement("input", id="search", title="Search")])
    broken = FakeFrame("https://other.example.com/ad", fail=True)
    page = FakePage(main, broken, _encounter_frame())

    with caplog.at_level("WARNING"):
        schemas = asyncio.run(scan_each(page))

    assert [schema.context_location for schema in schemas] == [
        "https://emr.example.com/main",
        "https://emr.example.com/encounter",
    ]
    assert any("context_failed" in record.getMessage() for record in caplog.records)


def test_same_identity_in_two_contexts_is_kept_twice():
    page = FakePage(
        FakeFrame("https://a.example.com", [FakeElement("input", id="notes", title="Notes")]),
        FakeFrame("https://b.example.com", [FakeElement("input", id="notes", title="Notes")]),
    )
    schema = asyncio.run(scan_all(page))
    assert schema.keys() == ["notes", "notes"]
