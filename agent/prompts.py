"""
Prompt architecture: the system prompt modules and the per-turn user message that
serializes the session context and operation history back to the planner.
"""

from typing import List, Optional, Sequence

from config import app_config
from operations import HistoryEntry, OperationKind, READ_ACTIONS, WRITE_ACTIONS
from tools import TOOL_DEFINITIONS

from .context import SessionContext


def _catalog_lines(kind: OperationKind) -> str:
    names = READ_ACTIONS if kind == OperationKind.READ else WRITE_ACTIONS
    lines = []
    for tool in TOOL_DEFINITIONS:
        if tool["name"] not in names:
            continue
        props = tool["input_schema"]["properties"]
        required = set(tool["input_schema"]["required"])
        params = ", ".join(p if p in required else f"{p}?" for p in props)
        lines.append(f"- {tool['name']}{{{params}}}: {tool['description']}")
    return "\n".join(lines)


# ============================================================
# Modular Prompt Architecture
# ============================================================

_MOD_IDENTITY = """You are LaTeX Master, an assistant that works on a LaTeX project inside the user's editor. You act on the project one operation at a time: each reply requests exactly ONE operation, you receive its result, and then you choose the next one."""

_MOD_PROTOCOL = """<operation_protocol>
Reply with exactly one JSON object, inside a ```json fenced block, in one of these shapes:

{"type": "read", "action": "<read action>", "parameters": {...}, "reasoning": "<why>"}
{"type": "write", "action": "<write action>", "parameters": {...}, "reasoning": "<why>"}
{"type": "complete", "message": "<summary for the user>", "reasoning": "<why>"}

"read" may only use read actions and "write" may only use write actions. Mixing them aborts the task.
</operation_protocol>"""

_MOD_NEGOTIATION = """<operation_protocol>
Call exactly one tool per reply. Read tools gather information, write tools change files, and the "complete" tool finishes the task with a summary for the user.
</operation_protocol>"""

_MOD_CATALOG = f"""<read_actions>
{_catalog_lines(OperationKind.READ)}
</read_actions>

<write_actions>
{_catalog_lines(OperationKind.WRITE)}
</write_actions>"""

_MOD_ESCAPING = """<escaping_rules>
File content travels inside a JSON string:
- Every LaTeX backslash is written as two backslashes: \\\\begin{document} encodes \\begin{document}.
- A LaTeX line break \\\\ is written as four backslashes.
- Line breaks in the file are written as \\n, double quotes as \\".
- Do not escape anything else.
</escaping_rules>"""

_MOD_RULES = """<rules>
- Never repeat an operation you just performed. Everything you already learned is listed in the next message; use it.
- Do not re-read a file listed under KNOWN FILES unless you have written to it since.
- Paths are absolute from the project root, e.g. /main.tex or /chapters/intro.tex.
- Parent directories are created automatically by create_file.
- Finish with "complete" as soon as the request is satisfied.
</rules>"""


def compose_system_prompt(tool_negotiation: bool = False) -> str:
    """Assemble the system prompt for either the JSON text protocol or catalog negotiation."""
    parts = [_MOD_IDENTITY]
    if tool_negotiation:
        parts.append(_MOD_NEGOTIATION)
    else:
        parts.extend([_MOD_PROTOCOL, _MOD_CATALOG, _MOD_ESCAPING])
    parts.append(_MOD_RULES)
    return "\n\n".join(parts)


# ============================================================
# Per-turn message
# ============================================================

def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... (truncated, {len(text)} chars total)"


def _check(flag: bool) -> str:
    return "[x]" if flag else "[ ]"


def _history_line(entry: HistoryEntry) -> str:
    status = "ok" if entry.result.success else f"FAILED: {entry.result.error}"
    return f"#{entry.sequence_number} {entry.operation.kind.value} {entry.operation.describe()} -> {status}"


def _next_step(context: SessionContext, history: Sequence[HistoryEntry]) -> str:
    if history and not history[-1].result.success:
        return "The last operation failed. Adjust based on the error above instead of repeating it."
    if context.file_structure is None and not context.directory_listings:
        return "Start by learning the project layout (get_file_structure)."
    if context.written_files:
        return "If the written files satisfy the request, finish with complete."
    return "Use what you know to make progress; read only what is still missing."


def build_turn_message(
    task: str,
    context: SessionContext,
    history: Sequence[HistoryEntry],
    history_limit: Optional[int] = None,
) -> str:
    """Serialize the task, what is already known, and what was already done."""
    history_limit = history_limit if history_limit is not None else app_config.prompt_history_limit
    stats = context.stats
    sections: List[str] = [f"TASK:\n{task}"]

    sections.append("\n".join([
        "INFORMATION STATUS:",
        f"{_check(context.file_structure is not None)} project structure",
        f"{_check(context.project_info is not None)} project info",
        f"{_check(bool(context.known_files))} file contents ({len(context.known_files)} known)",
        f"{_check(bool(context.directory_listings))} directory listings ({len(context.directory_listings)} known)",
    ]))

    if history:
        lines = [
            f"OPERATION HISTORY: {stats.total} done "
            f"({stats.reads} read, {stats.writes} write, {stats.failures} failed)",
        ]
        if len(history) > history_limit:
            lines.append(f"(showing last {history_limit} of {len(history)})")
        lines.extend(_history_line(e) for e in history[-history_limit:])
        sections.append("\n".join(lines))

    if context.file_structure is not None:
        sections.append(
            "KNOWN STRUCTURE (already retrieved, do not request again):\n"
            + _truncate(context.file_structure, app_config.structure_preview_chars)
        )

    if context.project_info is not None:
        info = context.project_info
        sections.append(
            "PROJECT INFO: "
            f"{info.get('total_files', 0)} files, {info.get('total_directories', 0)} directories, "
            f"current file: {info.get('current_file') or 'none'}"
        )

    if context.known_files:
        lines = ["KNOWN FILES (content already retrieved):"]
        for path, known in context.known_files.items():
            lines.append(f"--- {path} ---\n{_truncate(known.content, app_config.file_preview_chars)}")
        sections.append("\n".join(lines))

    if context.directory_listings:
        lines = ["DIRECTORY LISTINGS:"]
        limit = app_config.listing_preview_entries
        for path, listing in context.directory_listings.items():
            names = [
                e["name"] + ("/" if e.get("type") == "directory" else "")
                for e in listing.entries[:limit]
            ]
            more = f" (+{len(listing.entries) - limit} more)" if len(listing.entries) > limit else ""
            lines.append(f"{path}: {', '.join(names) or '(empty)'}{more}")
        sections.append("\n".join(lines))

    if context.search_results:
        lines = ["SEARCH RESULTS:"]
        for key, result in context.search_results.items():
            lines.append(f"'{key}': {result.get('total_matches', 0)} matches")
            for hit in result.get("results", [])[:5]:
                lines.append(f"  {hit['file_path']}:{hit['line_number']}: {hit['line_content']}")
        sections.append("\n".join(lines))

    if context.written_files:
        lines = ["WRITTEN THIS TASK:"]
        for path, written in context.written_files.items():
            lines.append(f"{path} ({written.action})")
        sections.append("\n".join(lines))

    sections.append(f"NEXT STEP: {_next_step(context, history)}")
    sections.append("Respond with exactly one operation.")
    return "\n\n".join(sections)
