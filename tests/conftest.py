"""Shared fixtures: a default linter and helpers to parse snippets."""
import textwrap

import pytest

from consumelint.analyzer.linter import Linter
from consumelint.analyzer.parser import LanguageParser
from consumelint.analyzer.scope import ScopeResolver
from consumelint.analyzer.vocabulary import Vocabulary


@pytest.fixture(scope="session")
def vocabulary():
    return Vocabulary.default()


@pytest.fixture(scope="session")
def linter(vocabulary):
    return Linter(vocabulary)


@pytest.fixture
def diagnose(linter):
    """Lint a snippet and return its diagnostics, optionally filtered by rule."""
    def _diagnose(code, rule=None, language='javascript'):
        result = linter.lint_source(textwrap.dedent(code), language)
        if rule is None:
            return result.diagnostics
        return [d for d in result.diagnostics if d.rule == rule]
    return _diagnose


@pytest.fixture
def analyze():
    """Parse a snippet and resolve its scopes: returns (source bytes, tree, analysis)."""
    def _analyze(code, language='javascript'):
        source = textwrap.dedent(code).encode('utf-8')
        tree = LanguageParser(language).parse_source(source)
        return source, tree, ScopeResolver().resolve(tree)
    return _analyze


def find_identifiers(node, name):
    """Every identifier-like node named ``name`` under ``node``, in source order."""
    found = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type in ('identifier', 'shorthand_property_identifier') and current.text.decode() == name:
            found.append(current)
        stack.extend(reversed(current.children))
    return sorted(found, key=lambda n: n.start_byte)
