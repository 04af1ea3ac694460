"""Prompt template for question enrichment.

Templates are plain text with a single ``{input_text}`` placeholder.  Only that
exact token is substituted, so JSON examples inside a template need no brace
escaping.
"""

from __future__ import annotations

from pathlib import Path

PLACEHOLDER = "{input_text}"

DEFAULT_TEMPLATE = """\
You are preparing an interview-question knowledge base.

The text below contains one or more raw interview questions, possibly numbered,
terse, or mixed with notes. For every distinct question:
- keep the question as written in "original_question";
- rewrite it as a clear, self-contained question in "detailed_question";
- answer it in a few precise sentences in "concise_answer";
- list 1-5 short topic tags in "tags".

Respond with JSON only, no prose outside the JSON, in exactly this shape:
{"questions": [{"original_question": "...", "detailed_question": "...", "concise_answer": "...", "tags": ["..."]}]}

Raw questions:
{input_text}
"""


def load_template(path: str | Path) -> str:
    """Read a template file and check it contains the placeholder."""
    template = Path(path).read_text(encoding="utf-8")
    if PLACEHOLDER not in template:
        raise ValueError(f"Prompt template {path} has no {PLACEHOLDER} placeholder")
    return template


def render(template: str, input_text: str) -> str:
    return template.replace(PLACEHOLDER, input_text)
