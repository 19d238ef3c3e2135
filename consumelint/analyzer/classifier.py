"""Reference classification: what does one occurrence of a binding do to it?

Every reference to a tracked binding falls into exactly one bucket:

    WRITE               x = ..., x += ..., x++, [x] = ...
    NON_CONSUMING_READ  x.shape, x.dtype, x.toString()
    CONSUMING_READ      x.add(1), x.dispose(), foo(x)
    KEEP_ALIVE_READ     x.ref
    PLAIN_READ          anything else (return x, const y = x, ...)

Classification is purely syntactic and fails open: when the surrounding
shape is not recognised the answer is PLAIN_READ, which can never produce a
use-after-consume report on its own.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple
from tree_sitter import Node

from consumelint.analyzer.scope import Reference, is_function_node
from consumelint.analyzer.vocabulary import Vocabulary


class RefKind(Enum):
    WRITE = "write"
    NON_CONSUMING_READ = "non-consuming-read"
    CONSUMING_READ = "consuming-read"
    KEEP_ALIVE_READ = "keep-alive-read"
    PLAIN_READ = "plain-read"


class SiteKind(Enum):
    METHOD_CALL = "method-call"
    TERMINAL_CALL = "terminal-call"
    ARGUMENT_PASS = "argument-pass"


@dataclass(eq=False)
class ConsumingSite:
    """The call expression that takes ownership of a binding."""
    description: str  # `.add()`, `np.multiply()`, ...
    identifier: Node  # the consumed identifier (where `.ref` gets inserted)
    call: Node  # the call_expression performing the consumption
    kind: SiteKind

    @property
    def line(self) -> int:
        return self.identifier.start_point[0] + 1


@dataclass(eq=False)
class Classification:
    kind: RefKind
    prop: Optional[str] = None  # property name for NON_CONSUMING_READ
    site: Optional[ConsumingSite] = None  # set for CONSUMING_READ

    @property
    def is_consuming(self) -> bool:
        return self.kind is RefKind.CONSUMING_READ


PLAIN = Classification(RefKind.PLAIN_READ)
WRITE = Classification(RefKind.WRITE)

# Expression wrappers that are transparent to the value (TS casts, parens)
TRANSPARENT_WRAPPERS = {
    'parenthesized_expression',
    'as_expression',
    'non_null_expression',
    'satisfies_expression',
    'type_assertion',
}

STATEMENT_BOUNDARIES = {
    'expression_statement',
    'lexical_declaration',
    'variable_declaration',
    'return_statement',
    'statement_block',
    'program',
}


def unwrap_transparent(node: Optional[Node]) -> Optional[Node]:
    """Strip casts, non-null assertions and parentheses around an expression."""
    current = node
    while current is not None and current.type in TRANSPARENT_WRAPPERS:
        named = current.named_children
        if not named:
            return current
        # `<T>expr` puts the type first; every other wrapper leads with the value
        current = named[-1] if current.type == 'type_assertion' else named[0]
    return current


def member_property(member: Node) -> Optional[str]:
    prop = member.child_by_field_name('property')
    if prop is None or prop.type not in ('property_identifier', 'private_property_identifier'):
        return None
    return prop.text.decode('utf-8')


def member_chain(identifier: Node) -> List[Node]:
    """Member expressions hanging off ``identifier`` (``x.a.b`` -> [x.a, x.a.b])."""
    chain = []
    current = identifier
    parent = current.parent
    while (parent is not None and parent.type == 'member_expression'
           and parent.child_by_field_name('object') == current
           and member_property(parent) is not None):
        chain.append(parent)
        current = parent
        parent = current.parent
    return chain


def reference_path(identifier: Node) -> str:
    """Dotted access path starting at ``identifier`` (``x.ref.add`` for ``x.ref.add(1)``)."""
    parts = [identifier.text.decode('utf-8')]
    parts.extend(member_property(m) for m in member_chain(identifier))
    return '.'.join(parts)


def first_property_after(identifier: Node, target_path: str) -> Optional[str]:
    """First property accessed after ``target_path`` by this reference, if any."""
    path = reference_path(identifier)
    if not path.startswith(f"{target_path}."):
        return None
    suffix = path[len(target_path) + 1:]
    return suffix.split('.')[0] or None


def tracked_target(member: Node) -> Optional[Tuple[Node, str]]:
    """Root identifier and dotted path for the object of ``<path>.<prop>``.

    Returns None when the object is not a plain identifier / member path
    (calls, subscripts, ``this`` ...), which cannot be tracked.
    """
    current = member.child_by_field_name('object')
    parts = []
    while current is not None and current.type == 'member_expression':
        prop = member_property(current)
        if prop is None:
            return None
        parts.insert(0, prop)
        current = current.child_by_field_name('object')
    if current is None or current.type != 'identifier':
        return None
    return current, '.'.join([current.text.decode('utf-8')] + parts)


def describe_callee(callee: Node) -> str:
    """Human-readable description of a callee expression."""
    if callee.type == 'identifier':
        return f"{callee.text.decode('utf-8')}()"
    if callee.type == 'member_expression':
        prop = member_property(callee)
        obj = callee.child_by_field_name('object')
        if prop is not None and obj is not None:
            if obj.type == 'identifier':
                return f"{obj.text.decode('utf-8')}.{prop}()"
            # nested: a.b.c()
            if obj.type == 'member_expression':
                inner_prop = member_property(obj)
                inner_obj = obj.child_by_field_name('object')
                if inner_prop is not None and inner_obj is not None and inner_obj.type == 'identifier':
                    return f"{inner_obj.text.decode('utf-8')}.{inner_prop}.{prop}()"
    return "a function call"


def call_of_argument(identifier: Node) -> Optional[Node]:
    """The call_expression ``identifier`` is passed to directly, if any."""
    args = identifier.parent
    if args is None or args.type != 'arguments':
        return None
    call = args.parent
    if call is None or call.type != 'call_expression':
        return None
    if call.child_by_field_name('arguments') != args:
        return None
    return call


class ReferenceClassifier:
    """Classifies references against an injected vocabulary.

    Args:
        vocabulary: Name tables for the target library
        source_code: Source bytes, used to look up borrow directives by line
    """

    def __init__(self, vocabulary: Vocabulary, source_code: bytes = b""):
        self.vocabulary = vocabulary
        self.source_lines = source_code.decode('utf-8', errors='replace').split('\n')
        self._directive = re.compile(r'/[/*].*' + re.escape(vocabulary.borrow_directive))

    def classify(self, reference: Reference) -> Classification:
        if reference.is_write:
            return WRITE
        return self.classify_identifier(reference.identifier)

    def classify_identifier(self, identifier: Node) -> Classification:
        parent = identifier.parent
        if parent is None:
            return PLAIN

        if parent.type == 'member_expression' and parent.child_by_field_name('object') == identifier:
            prop = member_property(parent)
            if prop is None:
                return PLAIN
            if self.vocabulary.is_keep_alive(prop):
                return Classification(RefKind.KEEP_ALIVE_READ, prop=prop)
            if self.vocabulary.is_non_consuming(prop):
                return Classification(RefKind.NON_CONSUMING_READ, prop=prop)
            if self.vocabulary.is_consuming_method(prop):
                call = parent.parent
                if call is not None and call.type == 'call_expression' and call.child_by_field_name('function') == parent:
                    kind = SiteKind.TERMINAL_CALL if self.vocabulary.is_terminal_method(prop) else SiteKind.METHOD_CALL
                    site = ConsumingSite(f".{prop}()", identifier, call, kind)
                    return Classification(RefKind.CONSUMING_READ, site=site)
            return PLAIN

        call = call_of_argument(identifier)
        if call is not None:
            callee = call.child_by_field_name('function')
            if callee is None or callee.type == 'super':
                return PLAIN
            if self.is_safe_callee(callee) or self.has_borrow_directive(call):
                return PLAIN
            site = ConsumingSite(describe_callee(callee), identifier, call, SiteKind.ARGUMENT_PASS)
            return Classification(RefKind.CONSUMING_READ, site=site)

        return PLAIN

    def is_safe_callee(self, callee: Node) -> bool:
        """Is the callee known not to take ownership of its arguments?"""
        if callee.type == 'identifier':
            return callee.text.decode('utf-8') in self.vocabulary.safe_callee_names
        if callee.type == 'member_expression':
            obj = callee.child_by_field_name('object')
            if obj is not None and obj.type == 'identifier':
                return obj.text.decode('utf-8') in self.vocabulary.safe_callee_namespaces
        return False

    def has_borrow_directive(self, call: Node) -> bool:
        """Borrow directive comment on the call's line or the line above."""
        row = call.start_point[0]
        for index in (row - 1, row):
            if 0 <= index < len(self.source_lines) and self._directive.search(self.source_lines[index]):
                return True
        return False

    def is_producer(self, expression: Optional[Node]) -> bool:
        """Does an initializer look like it produces a tracked resource?"""
        node = unwrap_transparent(expression)
        if node is None:
            return False

        if node.type == 'await_expression':
            named = node.named_children
            return bool(named) and self.is_producer(named[0])

        if node.type == 'call_expression':
            callee = node.child_by_field_name('function')
            if callee is None:
                return False
            if callee.type == 'identifier':
                return callee.text.decode('utf-8') in self.vocabulary.producer_names
            if callee.type == 'member_expression':
                prop = member_property(callee)
                return prop is not None and (
                    prop in self.vocabulary.producer_names
                    or prop in self.vocabulary.unambiguous_methods
                )
            return False

        if node.type == 'member_expression':
            return self.vocabulary.is_keep_alive(member_property(node) or '')

        return False


def is_consume_and_reassign(identifier: Node, name: str) -> bool:
    """Is ``identifier`` inside the RHS of an assignment back to ``name``?

    ``x = x.add(1)`` and ``x = np.reshape(x, s)`` consume and immediately
    rebind, so ``x`` is valid afterward.
    """
    node = identifier
    parent = node.parent
    while parent is not None:
        if parent.type == 'assignment_expression' and parent.child_by_field_name('right') == node:
            left = unwrap_transparent(parent.child_by_field_name('left'))
            if left is not None and left.type == 'identifier' and left.text.decode('utf-8') == name:
                return True
        if parent.type in STATEMENT_BOUNDARIES or is_function_node(parent):
            break
        node = parent
        parent = node.parent
    return False
