"""Control-flow context of a reference, answered by walking parent links.

The consumption state machine never builds a control-flow graph. Instead, each
consuming site is tagged with the nearest syntactic construct that can keep it
from dominating later code:

    terminating_if        `if (c) { return x.add(1); }`   - nothing after the if
                                                            sees that branch
    conditional_ancestor  `c ? x.add(1) : y`, `a || x.add(1)` - operand may not run
    enclosing_loop        `while (c) { x.add(1); }`       - body may run 0..n times
    crosses_closure       `() => x.add(1)`                - runs at an unknown time

Each walk stops at function boundaries: a construct outside the function that
holds the reference says nothing about when the reference runs.
"""
from dataclasses import dataclass
from typing import Dict, Optional, Tuple
from tree_sitter import Node

from consumelint.analyzer.scope import Scope, Variable, is_function_node, node_key


LOOP_TYPES = {'for_statement', 'for_in_statement', 'while_statement', 'do_statement'}

TERMINATOR_TYPES = {'return_statement', 'throw_statement', 'break_statement', 'continue_statement'}

SHORT_CIRCUIT_OPERATORS = {'&&', '||', '??'}
SHORT_CIRCUIT_ASSIGNMENTS = {'&&=', '||=', '??='}

# Shapes the analysis does not model: consumption inside them is never tracked
UNSUPPORTED_TYPES = {
    'switch_case',
    'switch_default',
    'try_statement',
    'catch_clause',
    'finally_clause',
    'labeled_statement',
}


@dataclass(frozen=True, eq=False)
class ControlFlowFacts:
    """Tags captured for one reference."""
    terminating_if: Optional[Node] = None
    conditional_ancestor: Optional[Node] = None
    enclosing_loop: Optional[Node] = None
    crosses_closure: bool = False
    unsupported: bool = False


def contains(outer: Optional[Node], inner: Node) -> bool:
    """Does ``outer``'s byte range enclose ``inner``'s?"""
    if outer is None:
        return False
    return outer.start_byte <= inner.start_byte and inner.end_byte <= outer.end_byte


def is_statement_boundary(node: Node) -> bool:
    node_type = node.type
    return (
        node_type.endswith('_statement')
        or node_type.endswith('_declaration')
        or node_type in ('statement_block', 'program', 'switch_case', 'switch_default')
    )


def else_body(else_clause: Node) -> Optional[Node]:
    for child in else_clause.named_children:
        if child.type != 'comment':
            return child
    return None


def terminates(statement: Optional[Node]) -> bool:
    """Does a statement definitely leave the enclosing block?

    return / throw / break / continue terminate; a block terminates when any
    of its statements does (the rest is unreachable); an ``if`` terminates
    when both branches do.
    """
    if statement is None:
        return False
    node_type = statement.type
    if node_type in TERMINATOR_TYPES:
        return True
    if node_type == 'statement_block':
        return any(terminates(child) for child in statement.named_children if child.type != 'comment')
    if node_type == 'else_clause':
        return terminates(else_body(statement))
    if node_type == 'if_statement':
        alternative = statement.child_by_field_name('alternative')
        return (
            terminates(statement.child_by_field_name('consequence'))
            and alternative is not None
            and terminates(alternative)
        )
    return False


def branch_of(owner: Node, child: Node) -> Optional[str]:
    """Which branch of a ternary / if ``child`` is (consequence or alternative)."""
    for field_name in ('consequence', 'alternative'):
        branch = owner.child_by_field_name(field_name)
        if branch is not None and branch == child:
            return field_name
    return None


class ContextResolver:
    """Computes ``ControlFlowFacts`` for references, memoised per node."""

    def __init__(self):
        self._terminating: Dict[Tuple[int, int], Optional[Node]] = {}
        self._conditional: Dict[Tuple[int, int], Optional[Node]] = {}
        self._loops: Dict[Tuple[int, int], Optional[Node]] = {}

    def resolve(self, node: Node, scope: Scope, variable: Variable) -> ControlFlowFacts:
        """Facts for ``node`` occurring in ``scope``, relative to ``variable``."""
        return ControlFlowFacts(
            terminating_if=self.terminating_if(node),
            conditional_ancestor=self.conditional_ancestor(node),
            enclosing_loop=self.enclosing_loop(node),
            crosses_closure=crosses_closure(scope, variable.scope),
            unsupported=self.unsupported_shape(node, variable),
        )

    def terminating_if(self, node: Node) -> Optional[Node]:
        """Nearest ``if`` whose branch holding ``node`` provably terminates."""
        key = node_key(node)
        if key not in self._terminating:
            self._terminating[key] = self._find_terminating_if(node)
        return self._terminating[key]

    def _find_terminating_if(self, node: Node) -> Optional[Node]:
        current = node
        parent = current.parent
        while parent is not None:
            if parent.type == 'if_statement' and branch_of(parent, current) is not None:
                if terminates(current):
                    return parent
            if is_function_node(parent):
                break
            current = parent
            parent = current.parent
        return None

    def conditional_ancestor(self, node: Node) -> Optional[Node]:
        """Nearest ternary / short-circuit expression with ``node`` in a maybe-skipped operand."""
        key = node_key(node)
        if key not in self._conditional:
            self._conditional[key] = self._find_conditional(node)
        return self._conditional[key]

    def _find_conditional(self, node: Node) -> Optional[Node]:
        current = node
        parent = current.parent
        while parent is not None:
            if is_statement_boundary(parent) or is_function_node(parent):
                break
            if parent.type == 'ternary_expression' and branch_of(parent, current) is not None:
                return parent
            if parent.type in ('binary_expression', 'augmented_assignment_expression'):
                operator = parent.child_by_field_name('operator')
                right = parent.child_by_field_name('right')
                if operator is not None and right is not None and right == current:
                    if operator.type in SHORT_CIRCUIT_OPERATORS or operator.type in SHORT_CIRCUIT_ASSIGNMENTS:
                        return parent
            current = parent
            parent = current.parent
        return None

    def enclosing_loop(self, node: Node) -> Optional[Node]:
        """Nearest loop whose body holds ``node``."""
        key = node_key(node)
        if key not in self._loops:
            self._loops[key] = self._find_loop(node)
        return self._loops[key]

    def _find_loop(self, node: Node) -> Optional[Node]:
        current = node
        parent = current.parent
        while parent is not None:
            if is_function_node(parent):
                break
            if parent.type in LOOP_TYPES:
                body = parent.child_by_field_name('body')
                if body is not None and body == current:
                    return parent
            current = parent
            parent = current.parent
        return None

    def unsupported_shape(self, node: Node, variable: Variable) -> bool:
        """Is there a switch / try / labeled statement between ``node`` and the declaration?

        Shapes that also enclose the declaration are not crossed and do not count.
        """
        declaration = variable.declaration
        anchor = declaration.name_node if declaration is not None else None
        stop = variable.scope.node
        current = node.parent
        while current is not None and current != stop:
            if current.type in UNSUPPORTED_TYPES and (anchor is None or not contains(current, anchor)):
                return True
            current = current.parent
        return False

    def in_call_arguments(self, call: Node, node: Node) -> bool:
        """Is ``node`` inside the argument list of ``call`` (evaluated before it runs)?"""
        return contains(call.child_by_field_name('arguments'), node)

    def unconditional_within(self, owner: Node, node: Node) -> bool:
        """Does ``node`` run whenever the branch of ``owner`` holding it runs?

        False when a nested ternary, if, short-circuit operand, loop body or
        unsupported shape sits between ``node`` and ``owner``.
        """
        current = node
        parent = current.parent
        while parent is not None and parent != owner:
            if is_function_node(parent) or parent.type in LOOP_TYPES or parent.type in UNSUPPORTED_TYPES:
                return False
            if parent.type in ('ternary_expression', 'if_statement') and branch_of(parent, current) is not None:
                return False
            if parent.type in ('binary_expression', 'augmented_assignment_expression'):
                operator = parent.child_by_field_name('operator')
                right = parent.child_by_field_name('right')
                if operator is not None and right is not None and right == current:
                    if operator.type in SHORT_CIRCUIT_OPERATORS or operator.type in SHORT_CIRCUIT_ASSIGNMENTS:
                        return False
            current = parent
            parent = current.parent
        return parent is not None

    def exclusive_branches(self, first: Node, second: Node) -> Optional[Node]:
        """The ternary / if holding ``first`` and ``second`` in opposite branches."""
        current = first
        parent = current.parent
        while parent is not None:
            if is_function_node(parent):
                break
            if parent.type in ('ternary_expression', 'if_statement'):
                branch = branch_of(parent, current)
                if branch is not None:
                    other = parent.child_by_field_name(
                        'alternative' if branch == 'consequence' else 'consequence'
                    )
                    if contains(other, second):
                        return parent
            current = parent
            parent = current.parent
        return None


def crosses_closure(reference_scope: Scope, variable_scope: Scope) -> bool:
    """Is a function scope crossed walking from the reference to the declaring scope?"""
    for scope in reference_scope.chain():
        if scope is variable_scope:
            return False
        if scope.kind == 'function':
            return True
    # declaring scope not on the chain: treat as opaque
    return True
