import asyncio

from fakes import FakeFrame, FakePage

from autofill_agent.agent.diagnostics import FrameDiagnostics, diagnose_all, render_diagnostics


def test_lines_are_truncated_per_category():
    frame = FrameDiagnostics(
        index=1,
        url="https://emr.example.com/interface/main/tabs/main.php?token=" + "x" * 40,
        title="OpenEMR",
        buttons=[f'BUTTON#b{i} "Save"' for i in range(12)],
    )
    lines = frame.lines(limit=10)
    assert lines[0].startswith("Frame 2: https://emr.example.com")
    assert len(lines[0].split('"')[0].split(": ", 1)[1].strip()) == 60
    assert lines[1] == "  BUTTONS (12):"
    assert lines[-1] == "     ... 2 more"
    assert len(lines) == 13


def test_empty_frames_render_nothing():
    assert FrameDiagnostics(index=0, url="about:blank").lines() == []


def test_diagnose_all_indexes_frames_in_order():
    main = FakeFrame("https://emr.example.com/main", interactive={"links": ['A#category_Clinical "Clinical"']})
    broken = FakeFrame("https://ads.example.com", fail=True)
    encounter = FakeFrame("https://emr.example.com/encounter", interactive={"selects": ['SELECT#sex ""']})
    frames = asyncio.run(diagnose_all(FakePage(main, broken, encounter)))

    assert [frame.index for frame in frames] == [0, 2]
    lines = render_diagnostics(frames)
    assert lines[0].startswith("Frame 1: https://emr.example.com/main")
    assert '     A#category_Clinical "Clinical"' in lines
    assert any(line.startswith("Frame 3:") for line in lines)
