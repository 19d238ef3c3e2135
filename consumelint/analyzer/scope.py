"""Lexical scope resolution for JavaScript / TypeScript syntax trees.

Builds eslint-scope style data from a tree-sitter tree: a scope chain, the
variables declared in each scope, and for every variable the ordered list of
read / write references to it.

Two traversals over the tree:
1. Declare: create scopes and register every binding (hoisting ``var`` and
   function declarations into the function scope).
2. Reference: visit every identifier in expression position and resolve it
   through the scope chain.

Both traversals use an explicit stack so deeply nested expressions (long
method chains, big string concatenations) cannot hit the recursion limit.
"""
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple
from tree_sitter import Node, Tree


FUNCTION_TYPES = {
    'function_declaration',
    'generator_function_declaration',
    'function_expression',
    'function',
    'generator_function',
    'arrow_function',
    'method_definition',
}

# Subtrees that never contain value references
SKIPPED_SUBTREES = {
    'import_statement',
    'type_annotation',
    'type_arguments',
    'type_parameters',
    'interface_declaration',
    'type_alias_declaration',
    'abstract_class_declaration_signature',
    'comment',
}

JSX_NAME_PARENTS = {
    'jsx_opening_element',
    'jsx_closing_element',
    'jsx_self_closing_element',
    'jsx_attribute',
    'nested_identifier',
    'member_expression_jsx',
}

REFERENCE_TYPES = {
    'identifier',
    'shorthand_property_identifier',
    'shorthand_property_identifier_pattern',
}

PATTERN_TYPES = {
    'object_pattern',
    'array_pattern',
    'pair_pattern',
    'assignment_pattern',
    'object_assignment_pattern',
    'rest_pattern',
}


def node_key(node: Node) -> Tuple[int, int]:
    """Stable identity for a node within one tree."""
    return (node.id, node.start_byte)


def is_function_node(node: Optional[Node]) -> bool:
    return node is not None and node.type in FUNCTION_TYPES


@dataclass(eq=False)
class Definition:
    """One declaration site of a variable."""
    kind: str  # 'variable', 'parameter', 'function', 'class', 'catch', 'import'
    name_node: Node
    node: Node  # declarator, function node, for-in statement, catch clause ...
    declaration_kind: Optional[str] = None  # 'const', 'let', 'var'


@dataclass(eq=False)
class Reference:
    """One occurrence of a variable's identifier."""
    identifier: Node
    scope: 'Scope'
    is_write: bool = False
    is_read: bool = True
    write_value: Optional[Node] = None  # RHS of the write, when there is a single one
    is_declaration: bool = False  # the initializing write of a declarator
    variable: Optional['Variable'] = None

    @property
    def name(self) -> str:
        return self.identifier.text.decode('utf-8')

    @property
    def start_byte(self) -> int:
        return self.identifier.start_byte

    @property
    def line(self) -> int:
        return self.identifier.start_point[0] + 1


@dataclass(eq=False)
class Variable:
    """A named storage location introduced by one or more declarations."""
    name: str
    scope: 'Scope'
    defs: List[Definition] = field(default_factory=list)
    references: List[Reference] = field(default_factory=list)

    @property
    def declaration(self) -> Optional[Definition]:
        return self.defs[0] if self.defs else None


@dataclass(eq=False)
class Scope:
    """A lexical scope: module, function, block, for-head, catch, switch or class."""
    kind: str
    node: Node
    parent: Optional['Scope'] = None
    variables: Dict[str, Variable] = field(default_factory=dict)
    children: List['Scope'] = field(default_factory=list)

    @property
    def is_function_scope(self) -> bool:
        return self.kind in ('function', 'module')

    def function_scope(self) -> 'Scope':
        """Nearest enclosing function (or module) scope, for hoisting."""
        scope = self
        while not scope.is_function_scope and scope.parent is not None:
            scope = scope.parent
        return scope

    def lookup(self, name: str) -> Optional[Variable]:
        scope = self
        while scope is not None:
            if name in scope.variables:
                return scope.variables[name]
            scope = scope.parent
        return None

    def chain(self) -> Iterator['Scope']:
        scope = self
        while scope is not None:
            yield scope
            scope = scope.parent


@dataclass
class ScopeAnalysis:
    """Result of resolving one syntax tree."""
    module_scope: Scope
    variables: List[Variable]
    globals: Dict[str, List[Reference]]
    scopes_by_node: Dict[Tuple[int, int], Scope]

    def variables_named(self, name: str) -> List[Variable]:
        return [v for v in self.variables if v.name == name]


class ScopeResolver:
    """Resolves declarations and references for one tree."""

    def __init__(self):
        self._scopes: Dict[Tuple[int, int], Scope] = {}
        self._variables: List[Variable] = []
        # identifier key -> (variable, write value, records an initializing write)
        self._bindings: Dict[Tuple[int, int], Tuple[Variable, Optional[Node], bool]] = {}
        self._globals: Dict[str, List[Reference]] = {}

    def resolve(self, tree: Tree) -> ScopeAnalysis:
        """Run both traversals and return the scope analysis.

        Args:
            tree: Parsed tree-sitter Tree (JavaScript, TypeScript or TSX)

        Returns:
            ScopeAnalysis with references sorted in source order
        """
        root = tree.root_node
        module_scope = Scope('module', root)
        self._scopes[node_key(root)] = module_scope

        self._declare_all(root, module_scope)
        self._reference_all(root, module_scope)

        for variable in self._variables:
            variable.references.sort(key=lambda r: r.identifier.start_byte)

        return ScopeAnalysis(
            module_scope=module_scope,
            variables=list(self._variables),
            globals=self._globals,
            scopes_by_node=self._scopes,
        )

    # ------------------------------------------------------------------
    # Pass 1: scopes and declarations
    # ------------------------------------------------------------------

    def _declare_all(self, root: Node, module_scope: Scope):
        stack: List[Tuple[Node, Scope]] = [(child, module_scope) for child in reversed(root.children)]
        while stack:
            node, scope = stack.pop()
            inner = self._enter(node, scope)
            for child in reversed(node.children):
                stack.append((child, inner))

    def _new_scope(self, kind: str, node: Node, parent: Scope) -> Scope:
        scope = Scope(kind, node, parent)
        parent.children.append(scope)
        self._scopes[node_key(node)] = scope
        return scope

    def _enter(self, node: Node, scope: Scope) -> Scope:
        """Register declarations made by ``node``; return the scope for its children."""
        node_type = node.type

        if node_type in FUNCTION_TYPES:
            name_node = node.child_by_field_name('name')
            if node_type in ('function_declaration', 'generator_function_declaration') and name_node is not None:
                self._declare(scope, name_node, Definition('function', name_node, node))
            inner = self._new_scope('function', node, scope)
            if node_type in ('function_expression', 'function', 'generator_function') and name_node is not None:
                self._declare(inner, name_node, Definition('function', name_node, node))
            for param in self._parameter_names(node):
                self._declare(inner, param, Definition('parameter', param, node))
            return inner

        if node_type == 'statement_block':
            if is_function_node(node.parent):
                return scope
            return self._new_scope('block', node, scope)

        if node_type in ('for_statement', 'for_in_statement'):
            inner = self._new_scope('for', node, scope)
            if node_type == 'for_in_statement':
                self._declare_for_in_head(node, inner)
            return inner

        if node_type == 'switch_body':
            return self._new_scope('switch', node, scope)

        if node_type == 'catch_clause':
            inner = self._new_scope('catch', node, scope)
            param = node.child_by_field_name('parameter')
            if param is not None:
                for name_node in pattern_identifiers(param):
                    self._declare(inner, name_node, Definition('catch', name_node, node))
            return inner

        if node_type in ('class_declaration', 'abstract_class_declaration'):
            name_node = node.child_by_field_name('name')
            if name_node is not None and name_node.type in ('identifier', 'type_identifier'):
                self._declare(scope, name_node, Definition('class', name_node, node))
            return scope

        if node_type == 'class':
            name_node = node.child_by_field_name('name')
            if name_node is not None and name_node.type in ('identifier', 'type_identifier'):
                inner = self._new_scope('class', node, scope)
                self._declare(inner, name_node, Definition('class', name_node, node))
                return inner
            return scope

        if node_type == 'lexical_declaration':
            kind = node.children[0].type if node.children else 'let'
            self._declare_declarators(node, scope, kind)
            return scope

        if node_type == 'variable_declaration':
            self._declare_declarators(node, scope.function_scope(), 'var')
            return scope

        if node_type == 'import_statement':
            self._declare_imports(node, scope)
            return scope

        return scope

    def _declare(self, scope: Scope, name_node: Node, definition: Definition,
                 write_value: Optional[Node] = None, records_write: bool = False) -> Variable:
        name = name_node.text.decode('utf-8')
        variable = scope.variables.get(name)
        if variable is None:
            variable = Variable(name, scope)
            scope.variables[name] = variable
            self._variables.append(variable)
        variable.defs.append(definition)
        self._bindings[node_key(name_node)] = (variable, write_value, records_write)
        return variable

    def _declare_declarators(self, declaration: Node, scope: Scope, kind: str):
        for declarator in declaration.named_children:
            if declarator.type != 'variable_declarator':
                continue
            name = declarator.child_by_field_name('name')
            value = declarator.child_by_field_name('value')
            if name is None:
                continue
            for name_node in pattern_identifiers(name):
                # Only a plain `const x = v` carries a single write value
                single_value = value if name_node == name else None
                self._declare(
                    scope, name_node,
                    Definition('variable', name_node, declarator, kind),
                    write_value=single_value,
                    records_write=value is not None,
                )

    def _declare_for_in_head(self, node: Node, for_scope: Scope):
        kind_node = node.child_by_field_name('kind')
        left = node.child_by_field_name('left')
        if kind_node is None or left is None:
            return
        kind = kind_node.type
        target = for_scope.function_scope() if kind == 'var' else for_scope
        for name_node in pattern_identifiers(left):
            self._declare(target, name_node, Definition('variable', name_node, node, kind),
                          records_write=True)

    def _declare_imports(self, node: Node, scope: Scope):
        for child in node.named_children:
            if child.type != 'import_clause':
                continue
            for item in child.named_children:
                if item.type == 'identifier':
                    self._declare(scope, item, Definition('import', item, node))
                elif item.type == 'namespace_import':
                    for ns_child in item.named_children:
                        if ns_child.type == 'identifier':
                            self._declare(scope, ns_child, Definition('import', ns_child, node))
                elif item.type == 'named_imports':
                    for specifier in item.named_children:
                        if specifier.type != 'import_specifier':
                            continue
                        local = specifier.child_by_field_name('alias') or specifier.child_by_field_name('name')
                        if local is not None and local.type == 'identifier':
                            self._declare(scope, local, Definition('import', local, node))

    def _parameter_names(self, function_node: Node) -> List[Node]:
        single = function_node.child_by_field_name('parameter')
        if single is not None:
            return pattern_identifiers(single)
        params = function_node.child_by_field_name('parameters')
        if params is None:
            return []
        names = []
        for param in params.named_children:
            if param.type in ('required_parameter', 'optional_parameter'):
                pattern = param.child_by_field_name('pattern')
                if pattern is not None:
                    names.extend(pattern_identifiers(pattern))
            else:
                names.extend(pattern_identifiers(param))
        return names

    # ------------------------------------------------------------------
    # Pass 2: references
    # ------------------------------------------------------------------

    def _reference_all(self, root: Node, module_scope: Scope):
        stack: List[Tuple[Node, Scope]] = [(root, module_scope)]
        while stack:
            node, scope = stack.pop()
            scope = self._scopes.get(node_key(node), scope)

            if node.type in SKIPPED_SUBTREES:
                continue

            if node.type in REFERENCE_TYPES:
                self._record(node, scope)
                continue

            for child in reversed(node.children):
                stack.append((child, scope))

    def _record(self, identifier: Node, scope: Scope):
        binding = self._bindings.get(node_key(identifier))
        if binding is not None:
            variable, write_value, records_write = binding
            if records_write:
                variable.references.append(Reference(
                    identifier, scope, is_write=True, is_read=False,
                    write_value=write_value, is_declaration=True, variable=variable,
                ))
            return

        parent = identifier.parent
        if parent is not None and parent.type in JSX_NAME_PARENTS:
            return
        if parent is not None and parent.type == 'export_specifier':
            alias = parent.child_by_field_name('alias')
            if alias is not None and alias == identifier:
                return
        is_write, is_read, write_value = access_mode(identifier)
        name = identifier.text.decode('utf-8')
        variable = scope.lookup(name)
        reference = Reference(identifier, scope, is_write=is_write, is_read=is_read,
                              write_value=write_value, variable=variable)
        if variable is None:
            self._globals.setdefault(name, []).append(reference)
        else:
            variable.references.append(reference)


def pattern_identifiers(node: Node) -> List[Node]:
    """Identifier nodes bound by a binding pattern, in source order.

    Default values (``{a = b}``, ``[c = d]``) are expressions, not bindings,
    so only the left side of an assignment pattern is followed.
    """
    found = []
    stack = [node]
    while stack:
        current = stack.pop()
        kind = current.type
        if kind in ('identifier', 'shorthand_property_identifier_pattern'):
            found.append(current)
        elif kind in ('assignment_pattern', 'object_assignment_pattern'):
            left = current.child_by_field_name('left')
            if left is not None:
                stack.append(left)
        elif kind == 'pair_pattern':
            value = current.child_by_field_name('value')
            if value is not None:
                stack.append(value)
        elif kind in ('object_pattern', 'array_pattern', 'rest_pattern'):
            for child in reversed(current.named_children):
                stack.append(child)
        elif kind in ('required_parameter', 'optional_parameter'):
            pattern = current.child_by_field_name('pattern')
            if pattern is not None:
                stack.append(pattern)
    found.sort(key=lambda n: n.start_byte)
    return found


def access_mode(identifier: Node) -> Tuple[bool, bool, Optional[Node]]:
    """Classify an expression-position identifier as (is_write, is_read, value).

    ``value`` is the assigned expression for a plain ``x = value`` write.
    """
    parent = identifier.parent
    if parent is None:
        return (False, True, None)

    if parent.type == 'assignment_expression' and parent.child_by_field_name('left') == identifier:
        return (True, False, parent.child_by_field_name('right'))
    if parent.type == 'augmented_assignment_expression' and parent.child_by_field_name('left') == identifier:
        return (True, True, None)
    if parent.type == 'update_expression':
        return (True, True, None)
    if parent.type == 'for_in_statement' and parent.child_by_field_name('left') == identifier:
        return (True, False, None)

    # Destructuring assignment: walk out of the pattern to its owner
    current = identifier
    while parent is not None and parent.type in PATTERN_TYPES:
        if parent.type in ('assignment_pattern', 'object_assignment_pattern'):
            if parent.child_by_field_name('left') != current:
                return (False, True, None)
        if parent.type == 'pair_pattern' and parent.child_by_field_name('value') != current:
            return (False, True, None)
        current = parent
        parent = parent.parent
    if current is not identifier and parent is not None:
        if parent.type == 'assignment_expression' and parent.child_by_field_name('left') == current:
            return (True, False, None)
        if parent.type == 'for_in_statement' and parent.child_by_field_name('left') == current:
            return (True, False, None)

    return (False, True, None)
