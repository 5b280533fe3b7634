"""Clean-up of model generated Markdown before it becomes a note."""

import re
from typing import List

REASONING_TAGS = (
    'think', 'analysis', 'reflection', 'reasoning',
    'chain_of_thought', 'chain-of-thought', 'cot',
)

_REASONING_FENCE = re.compile(
    r"```\s*(thinking|analysis|reasoning|reflection|chain[_ -]?of[_ -]?thought|cot|log)\b.*?```",
    re.IGNORECASE | re.DOTALL,
)
_ROLE_HEADER = re.compile(r"^\s*<(assistant|system|user)[^>]*>\s*", re.IGNORECASE | re.MULTILINE)

_INTRO_START = re.compile(
    r"^(ecco|qui|di\s+seguito|in\s+sintesi|in\s+breve|riassunto|sintesi|panoramica|overview|summary|below|here)"
)
_INTRO_KEYWORD = re.compile(r"(sintesi|riassun|summary|overview|organizz|panoramica)")

_SIGN_OFF = re.compile(
    r"\n+\s*(se\s+hai\s+bisogno[^\n]*|fammi\s+sapere[^\n]*|per\s+ulteriori\s+chiarimenti[^\n]*"
    r"|rimango\s+a\s+disposizione[^\n]*|contattami[^\n]*|let\s+me\s+know[^\n]*"
    r"|hope\s+this\s+helps[^\n]*|i\s+can\s+help[^\n]*)\s*$",
    re.IGNORECASE,
)

_CHECKBOX = re.compile(r"""^(\s*)[-*]?\s*(?:["']\s*)?\[\s*([xX])?\s*\](?!\()(?:\s*["'])?\s*(.*)$""")


def collapse_blank_lines(text: str) -> str:
    """Limit excess blank lines"""
    return re.sub(r"\n{3,}", "\n\n", text)


def _is_intro(paragraph: str) -> bool:
    text = paragraph.strip().lower()
    if len(text) < 4:
        return True
    return bool(_INTRO_START.match(text)) and bool(_INTRO_KEYWORD.search(text))


def _drop_intro(text: str) -> str:
    paragraphs = re.split(r"\n\s*\n", text)
    i = 0
    while i < min(2, len(paragraphs)) and _is_intro(paragraphs[i]):
        i += 1
    return "\n\n".join(paragraphs[i:]).lstrip()


def sanitize_summary(markdown: str) -> str:
    """Strip reasoning blocks, role headers and chatty intro/outro lines."""
    text = (markdown or "").strip()
    if not text:
        return text

    text = text.replace("＜", "<").replace("＞", ">")
    for tag in REASONING_TAGS:
        pattern = re.compile(
            rf"<\s*{re.escape(tag)}[^>]*>.*?<\s*/\s*{re.escape(tag)}\s*>",
            re.IGNORECASE | re.DOTALL,
        )
        text = pattern.sub("", text)
    text = _REASONING_FENCE.sub("", text)
    text = _ROLE_HEADER.sub("", text)

    text = _drop_intro(text)
    text = _SIGN_OFF.sub("", text)
    text = re.sub(r"^(\s*\n)+", "", text).strip()
    return collapse_blank_lines(text)


def normalize_checkboxes(markdown: str) -> str:
    """Rewrite every checkbox variant as ``- [ ] item`` or ``- [x] item``."""
    out: List[str] = []
    for line in (markdown or "").splitlines():
        line = re.sub(r"[［【]", "[", line)
        line = re.sub(r"[］】]", "]", line)
        line = re.sub(r"[“”«»]", '"', line)
        line = re.sub(r"[‘’]", "'", line)

        match = _CHECKBOX.match(line)
        if match:
            indent, checked, rest = match.groups()
            mark = "x" if checked else " "
            line = f"{indent}- [{mark}] {rest}".rstrip()
        out.append(line)
    return "\n".join(out)


def polish_summary(raw: str) -> str:
    return collapse_blank_lines(normalize_checkboxes(sanitize_summary(raw))).strip()
