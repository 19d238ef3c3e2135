"""Turns analyzer violations into user-facing diagnostics with text edits."""
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from tree_sitter import Node

from consumelint.analyzer.violations import Violation, ViolationKind
from consumelint.analyzer.vocabulary import Vocabulary


MESSAGES = {
    ViolationKind.USE_AFTER_CONSUME: (
        "`{name}` is used after being consumed by `{site}` (line {line}). "
        "Use `.{keep_alive}` at the consuming site to keep the array alive."
    ),
    ViolationKind.NEVER_RELEASED: (
        "`{name}` is created here but never consumed or disposed. "
        "Call `.{release}()` after its last use."
    ),
    ViolationKind.USELESS_KEEP_ALIVE: (
        "Unnecessary `.{keep_alive}` — `{name}` is not used after this, so the "
        "`.{keep_alive}` creates a leaked reference. Remove `.{keep_alive}` to let "
        "the operation consume the array directly."
    ),
    ViolationKind.KEEP_ALIVE_NEEDS_RELEASE: (
        "Unnecessary `.{keep_alive}` — `{name}` is only used for non-consuming "
        "property access ({props}) afterward. Add `.{release}()` after the last "
        "use to avoid a leak."
    ),
}

SUGGESTIONS = {
    ViolationKind.USE_AFTER_CONSUME: "Insert `.{keep_alive}` at the consuming site (line {line})",
    ViolationKind.NEVER_RELEASED: "Add `{name}.{release}()` after the last use of `{name}`.",
    ViolationKind.USELESS_KEEP_ALIVE: "Remove `.{keep_alive}`",
    ViolationKind.KEEP_ALIVE_NEEDS_RELEASE: "Add `{name}.{release}()` after the last use of `{name}`.",
}


@dataclass(frozen=True)
class TextEdit:
    """Replace bytes ``[start, end)`` of the source with ``text``."""
    start: int
    end: int
    text: str = ""

    def overlaps(self, other: 'TextEdit') -> bool:
        if self.start == self.end and other.start == other.end:
            return self.start == other.start
        return self.start < other.end and other.start < self.end

    def to_dict(self) -> Dict:
        return {"start": self.start, "end": self.end, "text": self.text}


@dataclass
class Fix:
    description: str
    edits: List[TextEdit] = field(default_factory=list)

    @property
    def start(self) -> int:
        return min(edit.start for edit in self.edits)

    def to_dict(self) -> Dict:
        return {"description": self.description, "edits": [e.to_dict() for e in self.edits]}


@dataclass
class Diagnostic:
    """A reportable violation: location, message and proposed edits.

    ``fix`` is safe to apply automatically; ``suggestions`` change behaviour
    and are only applied on request.
    """
    kind: ViolationKind
    name: str
    message: str
    line: int
    column: int
    end_line: int
    end_column: int
    fix: Optional[Fix] = None
    suggestions: List[Fix] = field(default_factory=list)
    blamed_line: Optional[int] = None

    @property
    def rule(self) -> str:
        return self.kind.value

    def to_dict(self) -> Dict:
        return {
            "rule": self.rule,
            "name": self.name,
            "message": self.message,
            "line": self.line,
            "column": self.column,
            "endLine": self.end_line,
            "endColumn": self.end_column,
            "blamedLine": self.blamed_line,
            "fix": self.fix.to_dict() if self.fix else None,
            "suggestions": [s.to_dict() for s in self.suggestions],
        }


def line_indent(source: bytes, offset: int) -> str:
    """Leading whitespace of the line containing ``offset``."""
    line_start = source.rfind(b"\n", 0, offset) + 1
    end = line_start
    while end < len(source) and source[end:end + 1] in (b" ", b"\t"):
        end += 1
    return source[line_start:end].decode("utf-8", errors="replace")


class DiagnosticReporter:
    """Builds diagnostics for one file.

    Args:
        source: Source bytes the violations were found in
        vocabulary: Vocabulary supplying the marker and release names
    """

    def __init__(self, source: bytes, vocabulary: Vocabulary):
        self.source = source
        self.vocabulary = vocabulary

    def report(self, violation: Violation) -> Diagnostic:
        kind = violation.kind
        values = {
            "name": violation.name,
            "keep_alive": self.vocabulary.keep_alive_accessor,
            "release": self.vocabulary.release_method,
            "props": ", ".join(f".{p}" for p in violation.props),
            "site": violation.site.description if violation.site else "",
            "line": violation.site.line if violation.site else violation.line,
        }
        node = violation.node
        diagnostic = Diagnostic(
            kind=kind,
            name=violation.name,
            message=MESSAGES[kind].format(**values),
            line=node.start_point[0] + 1,
            column=node.start_point[1] + 1,
            end_line=node.end_point[0] + 1,
            end_column=node.end_point[1] + 1,
            blamed_line=violation.site.line if violation.site else None,
        )
        description = SUGGESTIONS[kind].format(**values)

        if kind is ViolationKind.USE_AFTER_CONSUME:
            marker = TextEdit(violation.site.identifier.end_byte, violation.site.identifier.end_byte,
                              f".{self.vocabulary.keep_alive_accessor}")
            diagnostic.suggestions.append(Fix(description, [marker]))
        elif kind is ViolationKind.USELESS_KEEP_ALIVE:
            diagnostic.fix = Fix(description, [self._remove_marker(node)])
        elif violation.release_after is not None:
            diagnostic.suggestions.append(
                Fix(description, [self._append_release(violation.name, violation.release_after)])
            )
        return diagnostic

    def report_all(self, violations: List[Violation]) -> List[Diagnostic]:
        ordered = sorted(violations, key=lambda v: (v.start_byte, v.kind.value))
        return [self.report(v) for v in ordered]

    def _remove_marker(self, member: Node) -> TextEdit:
        # `x.ref` -> `x`: drop everything after the object, including `?.`
        obj = member.child_by_field_name("object")
        return TextEdit(obj.end_byte, member.end_byte, "")

    def _append_release(self, name: str, statement: Node) -> TextEdit:
        """Release call on its own line after ``statement``."""
        call = f"{name}.{self.vocabulary.release_method}();"
        indent = line_indent(self.source, statement.start_byte)
        return TextEdit(statement.end_byte, statement.end_byte, f"\n{indent}{call}")
