"""Prompt templates and the edit grammar contract shared with the parser."""

from __future__ import annotations

# Marker lines of the edit grammar. The parser imports these; keep the
# contract text below in sync with them.
HEADER_PREFIX = "@@@ "
END_MARKER = "@@@ END"
RENAME_SEPARATOR = " -> "
BODY_OPEN = "<<<"
BODY_CLOSE = ">>>"
CONTENT_BODY = "CONTENT"
MATCH_BODY = "MATCH"
WITH_BODY = "WITH"
# Last line of a CONTENT body whose text has no final newline.
NO_NEWLINE_MARKER = "\\ No newline at end of file"

SYSTEM_PREAMBLE = (
    "You are an expert software engineer editing a project on the user's behalf. "
    "You answer only with edit operations in the exact grammar described below."
)

EDIT_GRAMMAR = """\
## Output Grammar
Respond with one or more operation blocks followed by a final `@@@ END` line.
Marker lines must appear exactly as shown, at the start of the line, with no indentation.

@@@ CREATE <path>
<<<CONTENT
<full text of the new file>
>>>CONTENT

@@@ REPLACE <path>
<<<CONTENT
<full new text of an existing file>
>>>CONTENT

@@@ REPLACE_REGION <path>
<<<MATCH
<exact text copied from the current file; it must occur exactly once>
>>>MATCH
<<<WITH
<text that replaces the matched region>
>>>WITH

@@@ DELETE <path>

@@@ RENAME <old path> -> <new path>

@@@ END

Rules:
- Paths are relative to the project tree shown in the context, use `/` separators, and never leave it.
- Operations are applied in order; a later operation may target a path created or renamed earlier.
- Every line inside a CONTENT body ends with a newline in the written file. When the file must not end
  with a newline, put the line `\\ No newline at end of file` directly before `>>>CONTENT`.
- MATCH and WITH bodies are taken exactly as written between their marker lines; MATCH must not be empty.
- Prefer REPLACE_REGION for small changes to large files; include enough surrounding lines to make MATCH unique.
- Only blank lines may appear between blocks. Do not wrap the answer in markdown fences or add commentary."""

ASK_SYSTEM_PROMPT = "You are a concise, knowledgeable assistant for software engineers."

PROMPT_WRITER_SYSTEM_PROMPT = (
    "You write precise change requests for an AI code editor. Given the project context and a goal, "
    "reply with a single self-contained instruction that names the files to touch and the expected behaviour."
)


def render_instruction(instruction: str) -> str:
    """Format the caller's edit instruction as its own prompt section."""
    return f"## Instruction\n{instruction.strip()}"


def render_feedback(error: str, attempt: int) -> str:
    """Describe a rejected previous answer so the model can correct it."""
    return (
        "## Correction Required\n"
        f"Your previous answer (attempt {attempt}) could not be parsed: {error}\n"
        "Reply again with the complete set of operations, following the Output Grammar exactly."
    )


def render_context(context_text: str) -> str:
    return f"## Project Context\n{context_text.strip()}"


__all__ = [
    "ASK_SYSTEM_PROMPT",
    "BODY_CLOSE",
    "BODY_OPEN",
    "CONTENT_BODY",
    "EDIT_GRAMMAR",
    "END_MARKER",
    "HEADER_PREFIX",
    "MATCH_BODY",
    "NO_NEWLINE_MARKER",
    "PROMPT_WRITER_SYSTEM_PROMPT",
    "RENAME_SEPARATOR",
    "SYSTEM_PREAMBLE",
    "WITH_BODY",
    "render_context",
    "render_feedback",
    "render_instruction",
]
