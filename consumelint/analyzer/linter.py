"""Linter facade: parse, resolve scopes, run every check, report."""
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

from consumelint.analyzer.classifier import ReferenceClassifier
from consumelint.analyzer.consumption import ConsumptionStateMachine
from consumelint.analyzer.control_flow import ContextResolver
from consumelint.analyzer.lifecycle import LifecycleChecker
from consumelint.analyzer.parser import LanguageParser
from consumelint.analyzer.scope import Definition, ScopeResolver, Variable
from consumelint.analyzer.violations import Violation
from consumelint.analyzer.vocabulary import Vocabulary
from consumelint.reporter.diagnostics import Diagnostic, DiagnosticReporter
from consumelint.utils.logger import debug


EXCLUDED_DIRS = {
    'node_modules', 'dist', 'build', 'out', 'coverage',
    '.git', '.hg', '.svn', '.next', '.turbo', '.cache',
    '.consumelint_backup',
}


@dataclass
class LintResult:
    """Diagnostics for one source, plus the bytes they refer to."""
    path: Optional[Path]
    source: bytes = b""
    diagnostics: List[Diagnostic] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def skipped(self) -> bool:
        return self.error is not None


def tracked_declaration(variable: Variable, classifier: ReferenceClassifier) -> Optional[Definition]:
    """The declarator that makes ``variable`` a tracked resource, if any.

    Only ``const/let/var name = <producer>`` with a plain identifier name is
    tracked; any other binding is silently excluded.
    """
    definition = variable.declaration
    if definition is None or definition.kind != 'variable':
        return None
    declarator = definition.node
    if declarator.type != 'variable_declarator':
        return None
    name = declarator.child_by_field_name('name')
    if name is None or name.type != 'identifier' or name != definition.name_node:
        return None
    if not classifier.is_producer(declarator.child_by_field_name('value')):
        return None
    return definition


class Linter:
    """Runs the ownership checks over sources.

    Args:
        vocabulary: Name tables to check against (defaults to the built-in table)
    """

    def __init__(self, vocabulary: Optional[Vocabulary] = None):
        self.vocabulary = vocabulary or Vocabulary.default()
        self._parsers = {}

    def _parser(self, language: str) -> LanguageParser:
        if language not in self._parsers:
            self._parsers[language] = LanguageParser(language)
        return self._parsers[language]

    def violations(self, source: str | bytes, language: str = 'javascript') -> List[Violation]:
        """Raw violations for one source, sorted by position."""
        if isinstance(source, str):
            source = source.encode('utf-8')
        tree = self._parser(language).parse_source(source)
        analysis = ScopeResolver().resolve(tree)

        classifier = ReferenceClassifier(self.vocabulary, source)
        machine = ConsumptionStateMachine(classifier, ContextResolver())
        lifecycle = LifecycleChecker(classifier)

        found: List[Violation] = []
        for variable in analysis.variables:
            definition = tracked_declaration(variable, classifier)
            if definition is not None:
                found.extend(machine.run(variable, definition.name_node))
                never_released = lifecycle.check_never_released(variable, definition)
                if never_released is not None:
                    found.append(never_released)
            found.extend(lifecycle.check_keep_alive(variable))

        found.sort(key=lambda v: (v.start_byte, v.kind.value))
        return found

    def lint_source(self, source: str | bytes, language: str = 'javascript',
                    path: Optional[Path] = None) -> LintResult:
        """Lint in-memory source.

        Args:
            source: Source text or UTF-8 bytes
            language: 'javascript', 'typescript' or 'tsx'
            path: Path reported in the result

        Returns:
            LintResult with diagnostics in source order
        """
        if isinstance(source, str):
            source = source.encode('utf-8')
        reporter = DiagnosticReporter(source, self.vocabulary)
        diagnostics = reporter.report_all(self.violations(source, language))
        return LintResult(path=path, source=source, diagnostics=diagnostics)

    def lint_file(self, path: str | Path) -> LintResult:
        """Lint a file on disk.

        Unsupported extensions and unreadable files come back as skipped
        results with no diagnostics.
        """
        path = Path(path)
        language = LanguageParser.language_for(path)
        if language is None:
            debug(f"skipping {path}: unsupported extension")
            return LintResult(path=path, error="unsupported file type")
        try:
            source = path.read_bytes()
        except OSError as e:
            debug(f"skipping {path}: {e}")
            return LintResult(path=path, error=str(e))
        return self.lint_source(source, language, path)

    def lint_paths(self, paths: Iterable[str | Path], include_node_modules: bool = False) -> Iterator[LintResult]:
        for file_path in discover_files(paths, include_node_modules):
            yield self.lint_file(file_path)


def discover_files(paths: Iterable[str | Path], include_node_modules: bool = False) -> List[Path]:
    """Supported source files under ``paths``, sorted, skipping build output and VCS dirs.

    Files named explicitly are always returned, whatever their location.
    """
    excluded = set(EXCLUDED_DIRS)
    if include_node_modules:
        excluded.discard('node_modules')

    found = []
    for path in paths:
        path = Path(path)
        if path.is_file():
            found.append(path)
            continue
        for ext in LanguageParser.SUPPORTED_LANGUAGES:
            for file_path in path.rglob(f"*{ext}"):
                relative = file_path.relative_to(path)
                if any(part in excluded for part in relative.parts[:-1]):
                    continue
                if file_path.name.endswith('.d.ts'):
                    continue
                found.append(file_path)

    unique = sorted(set(found))
    debug(f"discovered {len(unique)} source files")
    return unique
