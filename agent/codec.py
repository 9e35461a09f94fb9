"""
Protocol codec: planner text -> Operation.

Extraction, then JSON decoding with an ordered table of recovery rules, then field
normalization. Write payloads go through a second ordered table that undoes the
over-escaping planners commonly apply to LaTeX source.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from bedrock_service import PlannerResponse
from operations import Operation, OperationKind, ProtocolError, catalog_kind
from tools.schemas import TOOL_NAME_NORMALIZE

logger = logging.getLogger(__name__)

DEFAULT_COMPLETION_MESSAGE = "Task completed."

_KIND_VALUES = {k.value: k for k in OperationKind}


# ============================================================
# Recovery rules
# ============================================================

@dataclass(frozen=True)
class RecoveryRule:
    """One named text repair. `fix` must return its input unchanged when it does not apply."""
    name: str
    description: str
    fix: Callable[[str], str]

    def apply(self, text: str) -> str:
        return self.fix(text)


def _sub(pattern: str, replacement: str, flags: int = 0) -> Callable[[str], str]:
    compiled = re.compile(pattern, flags)
    return lambda text: compiled.sub(replacement, text)


# LaTeX commands whose first letter is a JSON escape character (\b \f \n \r \t \u).
# A single backslash before them decodes "successfully" into a control character.
LATEX_ESCAPE_COMMANDS = (
    "begin", "bibliographystyle", "bibliography", "bigskip", "boldsymbol", "bfseries", "bf", "big", "beta",
    "frac", "footnotesize", "footnote", "flushleft", "flushright", "fbox", "forall",
    "newpage", "newline", "newcommand", "noindent", "normalsize", "nabla", "neq", "nu",
    "renewcommand", "ref", "rm", "rightarrow", "right", "rho", "raggedright",
    "textbf", "textit", "texttt", "textrm", "textsc", "textwidth", "text", "tableofcontents",
    "title", "tiny", "today", "times", "tau", "theta", "tilde", "to", "tag",
    "usepackage", "underline", "url", "upsilon",
)

# A backslash preceded by an even number of backslashes (i.e. not itself escaped)
_LONE_BACKSLASH = r"(?<!\\)((?:\\\\)*)\\"
_LATEX_COMMAND_PATTERN = _LONE_BACKSLASH + r"(?=(?:" + "|".join(LATEX_ESCAPE_COMMANDS) + r")(?![A-Za-z]))"
_LATEX_COMMAND_RE = re.compile(_LATEX_COMMAND_PATTERN)


def _smart_quotes(text: str) -> str:
    return text.replace("“", '"').replace("”", '"').replace("„", '"')


JSON_RECOVERY_RULES: Tuple[RecoveryRule, ...] = (
    RecoveryRule(
        "trailing_comma",
        "comma before a closing brace or bracket",
        _sub(r",\s*([}\]])", r"\1"),
    ),
    RecoveryRule(
        "latex_command_escape",
        "single backslash before a LaTeX command that starts with a JSON escape letter",
        _sub(_LATEX_COMMAND_PATTERN, r"\1\\\\"),
    ),
    RecoveryRule(
        "invalid_escape",
        "single backslash before a character JSON cannot escape",
        _sub(_LONE_BACKSLASH + r'(?![\\"/bfnrtu])', r"\1\\\\"),
    ),
    RecoveryRule(
        "smart_quotes",
        "typographic double quotes used as JSON delimiters",
        _smart_quotes,
    ),
)

CONTENT_RECOVERY_RULES: Tuple[RecoveryRule, ...] = (
    RecoveryRule(
        "quadruple_backslash",
        "four backslashes collapse to two",
        _sub(r"\\\\\\\\", r"\\\\"),
    ),
    RecoveryRule(
        "doubled_command_backslash",
        "exactly two backslashes directly before a letter collapse to one",
        _sub(r"(?<!\\)\\\\(?=[A-Za-z])", r"\\"),
    ),
    RecoveryRule(
        "literal_newline",
        "literal backslash-n not starting a lowercase command becomes a newline",
        _sub(r"(?<!\\)\\n(?![a-z])", "\n"),
    ),
    RecoveryRule(
        "literal_tab",
        "literal backslash-t not starting a lowercase command becomes a tab",
        _sub(r"(?<!\\)\\t(?![a-z])", "\t"),
    ),
)

# Content rules only run on write payloads that carry four consecutive backslashes
_OVER_ESCAPED_RE = re.compile(r"\\\\\\\\")

_LATEX_RULE = JSON_RECOVERY_RULES[1]


# ============================================================
# Extraction
# ============================================================

_FENCE_RE = re.compile(r"```([A-Za-z]*)[ \t]*\n?(.*?)\n[ \t]*```", re.DOTALL)


def _fenced_candidate(text: str) -> Optional[str]:
    for match in _FENCE_RE.finditer(text):
        tag = match.group(1).lower()
        body = match.group(2).strip()
        if tag in ("json", "operation") or (not tag and body.startswith("{")):
            return body
    return None


def _balanced_candidate(text: str) -> Optional[str]:
    """First balanced {...} span, ignoring braces inside JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
                continue
            if ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)
    return None


def _candidates(raw_text: str) -> List[str]:
    """Fenced block, first balanced object, whole trimmed text: in that order, without repeats."""
    found: List[str] = []
    trimmed = raw_text.strip()
    whole = trimmed if trimmed.startswith("{") and trimmed.endswith("}") else None
    for candidate in (_fenced_candidate(raw_text), _balanced_candidate(raw_text), whole):
        if candidate is not None and candidate not in found:
            found.append(candidate)
    return found


def extract_candidate(raw_text: str) -> Optional[str]:
    """The preferred candidate object text, or None when the output holds no object."""
    found = _candidates(raw_text)
    return found[0] if found else None


# ============================================================
# Decoding
# ============================================================

def _try_decode(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def decode_candidate(candidate: str) -> Tuple[Dict[str, Any], List[str]]:
    """Decode a candidate object, applying JSON recovery rules in order until it decodes.

    Returns the decoded object and the names of the rules that were applied.
    Raises ProtocolError when no rule combination yields an object.
    """
    applied: List[str] = []
    text = candidate
    if _LATEX_COMMAND_RE.search(text):
        text = _LATEX_RULE.apply(text)
        applied.append(_LATEX_RULE.name)

    decoded = _try_decode(text)
    if decoded is not None:
        return decoded, applied

    for rule in JSON_RECOVERY_RULES:
        repaired = rule.apply(text)
        if repaired == text:
            continue
        text = repaired
        applied.append(rule.name)
        decoded = _try_decode(text)
        if decoded is not None:
            return decoded, applied

    raise ProtocolError("Planner output is not a decodable JSON object", raw_text=candidate)


def recover_content(content: str) -> Tuple[str, List[str]]:
    """Apply the content rules in order. Best effort: reduces over-escaping, never validates LaTeX."""
    applied: List[str] = []
    for rule in CONTENT_RECOVERY_RULES:
        repaired = rule.apply(content)
        if repaired != content:
            applied.append(rule.name)
            content = repaired
    return content, applied


# ============================================================
# Normalization
# ============================================================

def _text(value: Any) -> str:
    return value if isinstance(value, str) else ("" if value is None else str(value))


def normalize_operation(data: Dict[str, Any], raw_text: str = "") -> Operation:
    """Turn a decoded object into an Operation, repairing misplaced fields."""
    kind_value = _text(data.get("type") or data.get("kind")).strip()
    action = data.get("action")
    if action is None and "tool_name" in data:
        action = data.get("tool_name")
    action = _text(action).strip() or None

    parameters = data.get("parameters")
    if parameters is None:
        parameters = data.get("args")
    if parameters is None:
        parameters = {}
    if not isinstance(parameters, dict):
        raise ProtocolError(f"parameters must be an object, got {type(parameters).__name__}", raw_text=raw_text)

    if action == "complete":
        kind_value = "complete"
    if action:
        action = TOOL_NAME_NORMALIZE.get(action, action)

    kind = _KIND_VALUES.get(kind_value.lower())
    if kind is None:
        # An action name in the type slot, or no type at all
        slot_action = TOOL_NAME_NORMALIZE.get(kind_value, kind_value) if kind_value else action
        kind = catalog_kind(slot_action)
        if kind is None:
            raise ProtocolError(f"Unrecognized operation type: {kind_value or '<missing>'}", raw_text=raw_text)
        logger.info(f"Normalized operation type {kind_value or '<missing>'!r} to {kind.value}/{slot_action}")
        action = slot_action

    reasoning = _text(data.get("reasoning"))

    if kind == OperationKind.COMPLETE:
        message = (
            _text(data.get("message")).strip()
            or _text(data.get("content")).strip()
            or _text(parameters.get("message")).strip()
            or DEFAULT_COMPLETION_MESSAGE
        )
        return Operation(kind=kind, message=message, reasoning=reasoning)

    if not action:
        raise ProtocolError(f"Operation of type {kind.value} has no action", raw_text=raw_text)

    return Operation(kind=kind, action=action, parameters=dict(parameters), reasoning=reasoning)


def parse_operation(raw_text: str) -> Operation:
    """Parse planner text into an Operation or raise ProtocolError carrying the raw text.

    A candidate that cannot be decoded falls through to the next one, so a fence
    cut short by a code block inside a string still parses from the balanced object.
    """
    raw_text = raw_text or ""
    candidates = _candidates(raw_text)
    if not candidates:
        logger.warning(f"No operation object found in planner output: {raw_text[:200]!r}")
        raise ProtocolError("No operation object found in planner output", raw_text=raw_text)

    decoded: Optional[Tuple[Dict[str, Any], List[str]]] = None
    first_error: Optional[ProtocolError] = None
    for candidate in candidates:
        try:
            decoded = decode_candidate(candidate)
            break
        except ProtocolError as e:
            first_error = first_error or e

    try:
        if decoded is None:
            raise first_error
        data, applied = decoded
        op = normalize_operation(data, raw_text=raw_text)
    except ProtocolError as e:
        logger.warning(f"Unrecoverable planner output ({e}): {raw_text[:200]!r}")
        raise ProtocolError(str(e), raw_text=raw_text) from e
    if applied:
        logger.info(f"Repaired planner JSON with: {', '.join(applied)}")

    content = op.parameters.get("content")
    if op.kind == OperationKind.WRITE and isinstance(content, str) and _OVER_ESCAPED_RE.search(content):
        fixed, content_applied = recover_content(content)
        if content_applied:
            logger.info(f"De-escaped {op.action} content with: {', '.join(content_applied)}")
            op = Operation(
                kind=op.kind,
                action=op.action,
                parameters={**op.parameters, "content": fixed},
                reasoning=op.reasoning,
            )
    return op


def operation_from_response(response: PlannerResponse) -> Operation:
    """Resolve a PlannerResponse into an Operation.

    A negotiated catalog call is already structured; only its names are normalized.
    Free text goes through parse_operation.
    """
    if not response.is_operation:
        return parse_operation(response.text)

    tool_input = dict(response.tool_input or {})
    name = _text(response.tool_name).strip()
    if name == "complete":
        data = {"type": "complete", "message": tool_input.get("message"), "reasoning": response.text}
    else:
        data = {"type": name, "parameters": tool_input, "reasoning": response.text}
    return normalize_operation(data, raw_text=json.dumps({"tool_name": name, "input": tool_input}))
