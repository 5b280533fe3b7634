from meeting_recorder.markdown import (
    collapse_blank_lines,
    normalize_checkboxes,
    polish_summary,
    sanitize_summary,
)

MESSY_CHECKBOXES = "\n".join([
    "[ ] Task one @Bob",
    "* [X] Done thing",
    "-[x]Compact",
    "  - ［ ］ Fullwidth",
    '- "[ ]" Quoted',
    "- [link](https://example.com)",
    "Regular line",
])


def test_normalize_checkboxes():
    assert normalize_checkboxes(MESSY_CHECKBOXES).splitlines() == [
        "- [ ] Task one @Bob",
        "- [x] Done thing",
        "- [x] Compact",
        "  - [ ] Fullwidth",
        "- [ ] Quoted",
        "- [link](https://example.com)",
        "Regular line",
    ]


def test_normalize_checkboxes_is_idempotent():
    once = normalize_checkboxes(MESSY_CHECKBOXES)
    assert normalize_checkboxes(once) == once


def test_sanitize_strips_reasoning_intro_and_sign_off():
    raw = (
        "<think>The user wants a summary.</think>\n"
        "Here is the summary overview of the meeting:\n\n"
        "## Overview\nThe team agreed on the roadmap.\n\n"
        "Let me know if you need anything else."
    )
    assert sanitize_summary(raw) == "## Overview\nThe team agreed on the roadmap."


def test_sanitize_strips_reasoning_fences_and_role_headers():
    assert sanitize_summary("```thinking\nplan it\n```\n## Notes\n- a") == "## Notes\n- a"
    assert sanitize_summary("<assistant>\n## Title\nBody") == "## Title\nBody"


def test_sanitize_keeps_plain_content():
    text = "## Decisions\n- Ship on Friday"
    assert sanitize_summary(text) == text


def test_collapse_blank_lines():
    assert collapse_blank_lines("a\n\n\n\nb") == "a\n\nb"


def test_polish_empty_output():
    assert polish_summary("") == ""
    assert polish_summary("<think>nothing useful</think>") == ""
