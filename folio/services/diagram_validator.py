"""
Static syntax check for generated mind-map diagrams (Mermaid text).

The check never blocks persistence; its result is stored next to the diagram
so clients can decide whether to render it.
"""
from __future__ import annotations

import dataclasses
import re
from typing import Dict, List, Optional

DIAGRAM_TYPES = (
    "mindmap",
    "graph",
    "flowchart",
    "gitgraph",
    "journey",
    "gantt",
    "pie",
    "quadrantChart",
)

OUTLINE_TYPE = "mindmap"
FORBIDDEN_LABEL_CHARS = re.compile(r"[\[\]{}()|]")

_TYPES_BY_LOWER = {name.lower(): name for name in DIAGRAM_TYPES}


@dataclasses.dataclass
class DiagramValidation:
    is_valid: bool
    diagram_type: Optional[str]
    errors: List[Dict[str, object]] = dataclasses.field(default_factory=list)

    def add(self, line: int, message: str) -> None:
        self.errors.append({"line": line, "message": message})
        self.is_valid = False


def validate_diagram(source: str) -> DiagramValidation:
    """
    Validate *source* and return every problem found.

    The first non-blank line must declare a known diagram type.  For ``mindmap``
    each following non-blank line is a node: it must be indented deeper than
    the declaration, use a single whitespace kind, step in multiples of the
    first node's indent, go at most one level deeper than the previous node,
    and carry none of ``[ ] { } ( ) < > |`` in its label.
    """
    lines = (source or "").replace("\r\n", "\n").split("\n")
    numbered = [(no, line) for no, line in enumerate(lines, start=1) if line.strip()]

    if not numbered:
        result = DiagramValidation(is_valid=True, diagram_type=None)
        result.add(1, "diagram is empty")
        return result

    decl_no, decl_line = numbered[0]
    keyword = decl_line.strip().split()[0]
    diagram_type = _TYPES_BY_LOWER.get(keyword.lower())

    result = DiagramValidation(is_valid=True, diagram_type=diagram_type)
    if diagram_type is None:
        result.add(decl_no, f"unknown diagram type {keyword!r}")
        return result

    nodes = numbered[1:]
    if not nodes:
        result.add(decl_no, "diagram declares no nodes")
        return result

    if diagram_type == OUTLINE_TYPE:
        _check_outline(nodes, _indent_of(decl_line), result)
    return result


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def _check_outline(nodes, decl_indent: str, result: DiagramValidation) -> None:
    unit = 0
    kind = None
    prev_depth = 0

    for no, line in nodes:
        indent = _indent_of(line)
        label = line.strip()

        if FORBIDDEN_LABEL_CHARS.search(label):
            result.add(no, "node label contains a bracket, brace, parenthesis or pipe")

        if len(indent) <= len(decl_indent):
            result.add(no, "node is not indented below the diagram declaration")
            continue

        chars = set(indent)
        if len(chars) > 1:
            result.add(no, "indentation mixes tabs and spaces")
            continue
        if kind is None:
            kind = chars.pop()
        elif kind not in chars:
            result.add(no, "indentation switches between tabs and spaces")
            continue

        relative = len(indent) - len(decl_indent)
        if unit == 0:
            unit = relative
        if relative % unit:
            result.add(no, f"indentation of {relative} is not a multiple of {unit}")
            continue

        depth = relative // unit
        if depth > prev_depth + 1:
            result.add(no, "node is nested more than one level below its parent")
            continue
        prev_depth = depth
