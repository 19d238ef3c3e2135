"""Release checks: resources that are never released, and `.ref` keep-alive markers.

Both checks run after the use-after-consume scan and reuse the same
reference classification.

never-released
    A tracked binding none of whose references consumes it, keeps it alive,
    rebinds it or lets it escape (returned, stored, captured by a closure).

useless-keep-alive / keep-alive-needs-release
    ``x.ref`` bumps a reference count so a following consumer leaves ``x``
    usable. When nothing consumes ``x`` afterwards the bump is either
    pointless (no later use: drop it) or needs a matching release (only
    non-consuming reads follow: add ``x.dispose()``).
"""
from typing import List, Optional
from tree_sitter import Node

from consumelint.analyzer.classifier import (
    ReferenceClassifier,
    RefKind,
    TRANSPARENT_WRAPPERS,
    first_property_after,
    member_chain,
    member_property,
    reference_path,
    tracked_target,
)
from consumelint.analyzer.control_flow import SHORT_CIRCUIT_OPERATORS, TERMINATOR_TYPES, contains, crosses_closure
from consumelint.analyzer.scope import Definition, Reference, Variable
from consumelint.analyzer.violations import Violation, ViolationKind


# Parents through which a plain read hands the value to someone else
ESCAPE_PARENTS = {
    'return_statement',
    'yield_expression',
    'throw_statement',
    'array',
    'spread_element',
    'export_specifier',
    'export_statement',
}

BORROWING_FUNCTIONS = {'arrow_function', 'function_expression', 'function'}

SWITCH_CASE_TYPES = {'switch_case', 'switch_default'}

BLOCK_TYPES = {'program', 'statement_block'} | SWITCH_CASE_TYPES


def escapes(identifier: Node) -> bool:
    """Does this plain read hand the value off (return, store, alias, export)?"""
    if identifier.type == 'shorthand_property_identifier':
        return True

    current = identifier
    parent = current.parent
    while parent is not None:
        if parent.type in TRANSPARENT_WRAPPERS:
            pass
        elif parent.type == 'ternary_expression' and parent.child_by_field_name('condition') != current:
            pass
        elif parent.type == 'binary_expression':
            operator = parent.child_by_field_name('operator')
            if operator is None or operator.type not in SHORT_CIRCUIT_OPERATORS:
                return False
        else:
            break
        current = parent
        parent = current.parent

    if parent is None:
        return False
    if parent.type in ESCAPE_PARENTS:
        return True
    if parent.type == 'arguments':
        # `new Model(x)` stores the value
        return parent.parent is not None and parent.parent.type == 'new_expression'
    if parent.type == 'pair':
        return parent.child_by_field_name('value') == current
    if parent.type == 'variable_declarator':
        return parent.child_by_field_name('value') == current
    if parent.type in ('assignment_expression', 'augmented_assignment_expression'):
        return parent.child_by_field_name('right') == current
    if parent.type == 'arrow_function':
        return parent.child_by_field_name('body') == current
    return False


def is_borrowed_binding(variable: Variable) -> bool:
    """Is the binding lent to us by a caller that keeps ownership?

    Callback parameters (``items.map((x) => ...)``) and for-in / for-of loop
    variables refer to values owned by the collection being iterated.
    """
    for definition in variable.defs:
        if definition.kind == 'parameter' and definition.node.type in BORROWING_FUNCTIONS:
            parent = definition.node.parent
            if parent is not None and parent.type == 'arguments':
                call = parent.parent
                if call is not None and call.type in ('call_expression', 'new_expression'):
                    return True
        if definition.kind == 'variable' and definition.node.type == 'for_in_statement':
            return True
    return False


def enclosing_block_statement(node: Node, container: Optional[Node] = None) -> Node:
    """Statement holding ``node`` that sits directly in ``container``.

    Without a container (or when ``node`` is not inside it) the nearest
    statement directly in a block or the program is used.
    """
    if container is not None and contains(container, node):
        current = node
        while current.parent is not None and current.parent != container:
            current = current.parent
        if current.parent is not None:
            return current
    current = node
    while current.parent is not None and current.parent.type not in BLOCK_TYPES:
        current = current.parent
    return current


def release_point(anchor: Node, container: Optional[Node] = None) -> Optional[Node]:
    """Statement to append the release call after, or None when there is none.

    When the statement holding ``anchor`` leaves the block (return, throw,
    break, continue) nothing after it runs, and a release in front of it
    would precede its own read.
    """
    statement = enclosing_block_statement(anchor, container)
    if statement.type in TERMINATOR_TYPES:
        return None
    parent = statement.parent
    if parent is None or parent.type not in BLOCK_TYPES:
        return None
    if parent.type in SWITCH_CASE_TYPES and parent.child_by_field_name('value') == statement:
        return None
    return statement


def declaration_container(definition: Definition) -> Optional[Node]:
    """Block or program the declaring statement sits in."""
    statement = definition.node.parent  # lexical_declaration / variable_declaration
    if statement is None:
        return None
    container = statement.parent
    if container is None or container.type not in BLOCK_TYPES:
        return None
    return container


class LifecycleChecker:
    """Never-released and keep-alive checks for one file.

    Args:
        classifier: Reference classifier bound to the file's source
    """

    def __init__(self, classifier: ReferenceClassifier):
        self.classifier = classifier
        self.vocabulary = classifier.vocabulary

    # ------------------------------------------------------------------
    # never-released
    # ------------------------------------------------------------------

    def check_never_released(self, variable: Variable, definition: Definition) -> Optional[Violation]:
        """Report a tracked binding that is never consumed, rebound or handed off.

        Args:
            variable: The tracked binding
            definition: Its tracked declarator definition

        Returns:
            A never-released violation, or None
        """
        statement = definition.node.parent
        if statement is not None and statement.parent is not None and statement.parent.type == 'export_statement':
            return None

        uses = [ref for ref in variable.references if ref.identifier != definition.name_node]
        for reference in uses:
            if self._reaches_release(reference, variable):
                return None

        anchor = uses[-1].identifier if uses else definition.node
        container = declaration_container(definition)
        return Violation(
            kind=ViolationKind.NEVER_RELEASED,
            name=variable.name,
            node=definition.name_node,
            release_after=release_point(anchor, container),
        )

    def _reaches_release(self, reference: Reference, variable: Variable) -> bool:
        if reference.is_write:
            return True
        if crosses_closure(reference.scope, variable.scope):
            return True
        kind = self.classifier.classify(reference).kind
        if kind in (RefKind.CONSUMING_READ, RefKind.KEEP_ALIVE_READ):
            return True
        return escapes(reference.identifier)

    # ------------------------------------------------------------------
    # keep-alive markers
    # ------------------------------------------------------------------

    def check_keep_alive(self, variable: Variable) -> List[Violation]:
        """Inspect every ``<path>.ref`` marker rooted at ``variable``.

        Returns:
            Useless / needs-release violations, in source order
        """
        if is_borrowed_binding(variable):
            return []

        violations = []
        for reference in variable.references:
            if not reference.is_read:
                continue
            for member in member_chain(reference.identifier):
                if not self.vocabulary.is_keep_alive(member_property(member) or ''):
                    continue
                target = tracked_target(member)
                if target is None:
                    continue
                violation = self._check_marker(variable, reference, member, target[1])
                if violation is not None:
                    violations.append(violation)
        return violations

    def _on_path(self, reference: Reference, target_path: str) -> bool:
        path = reference_path(reference.identifier)
        return path == target_path or path.startswith(f"{target_path}.")

    def _is_passive(self, reference: Reference, target_path: str) -> bool:
        """A read of ``target_path`` that neither consumes nor hands it off."""
        prop = first_property_after(reference.identifier, target_path)
        if prop is None:
            return False
        return self.vocabulary.is_keep_alive(prop) or self.vocabulary.is_non_consuming(prop)

    def _check_marker(self, variable: Variable, reference: Reference,
                      member: Node, target_path: str) -> Optional[Violation]:
        if crosses_closure(reference.scope, variable.scope):
            return None

        same_path = [ref for ref in variable.references if self._on_path(ref, target_path)]
        index = next((i for i, ref in enumerate(same_path) if ref is reference), None)
        if index is None:
            return None

        # Consumed earlier: the marker protects a value that is already handed off
        for earlier in same_path[:index]:
            if earlier.is_read and not self._is_passive(earlier, target_path):
                return None

        later_refs = same_path[index + 1:]
        if not later_refs:
            return Violation(
                kind=ViolationKind.USELESS_KEEP_ALIVE,
                name=target_path,
                node=member,
            )

        props = []
        for later in later_refs:
            if later.is_write:
                return None
            prop = first_property_after(later.identifier, target_path)
            if prop is None:
                return None
            if self.vocabulary.is_keep_alive(prop):
                # another marker later on: this one is justified
                return None
            if not self.vocabulary.is_non_consuming(prop):
                return None
            if prop not in props:
                props.append(prop)

        last = later_refs[-1].identifier
        return Violation(
            kind=ViolationKind.KEEP_ALIVE_NEEDS_RELEASE,
            name=target_path,
            node=member,
            props=tuple(props),
            release_after=release_point(last),
        )
