from typing import Iterable, List, Tuple

from consumelint.reporter.diagnostics import Diagnostic, Fix, TextEdit


def select_fixes(diagnostics: Iterable[Diagnostic], include_suggestions: bool = False) -> List[Fix]:
    """Pick one fix per diagnostic: the automatic fix, else (optionally) the first suggestion."""
    selected = []
    for diagnostic in diagnostics:
        if diagnostic.fix is not None:
            selected.append(diagnostic.fix)
        elif include_suggestions and diagnostic.suggestions:
            selected.append(diagnostic.suggestions[0])
    return selected


def apply_fixes(source: bytes, diagnostics: Iterable[Diagnostic],
                include_suggestions: bool = False) -> Tuple[bytes, int]:
    """
    Apply the fixes of ``diagnostics`` to ``source``.

    A fix whose edits overlap an already accepted fix is dropped (the next
    run will pick it up against the rewritten source). Identical edits
    proposed by several diagnostics are applied once.

    Returns:
        (rewritten source, number of fixes applied)
    """
    fixes = select_fixes(diagnostics, include_suggestions)
    fixes = [f for f in fixes if f.edits]

    # 1. Accept fixes in ascending order, skipping overlaps
    fixes.sort(key=lambda f: f.start)
    accepted: List[TextEdit] = []
    applied = 0
    for fix in fixes:
        if all(edit in accepted for edit in fix.edits):
            continue
        if any(edit.overlaps(other) for edit in fix.edits for other in accepted):
            continue
        accepted.extend(fix.edits)
        applied += 1

    # 2. Apply edits in DESCENDING order to preserve offsets
    accepted.sort(key=lambda e: (e.start, e.end), reverse=True)
    modified = bytearray(source)
    for edit in accepted:
        modified[edit.start:edit.end] = edit.text.encode("utf-8")

    return bytes(modified), applied
