"""Name tables describing which calls produce, consume or borrow a resource.

The analyzer never reads these names from module globals: a ``Vocabulary`` is
built once (from the built-in API surface, JSON overrides, or by hand in tests)
and injected into every component that needs it.
"""
import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Optional

from consumelint.analyzer import api_surface
from consumelint.utils.logger import safe_print


# JSON key -> Vocabulary attribute for the set-valued tables
SET_KEYS = {
    'producers': 'producer_names',
    'unambiguous_methods': 'unambiguous_methods',
    'array_methods': 'array_returning_methods',
    'terminal_methods': 'terminal_methods',
    'non_consuming_props': 'non_consuming_props',
    'safe_callees': 'safe_callee_names',
    'safe_namespaces': 'safe_callee_namespaces',
}

# JSON key -> Vocabulary attribute for the single-name entries
SCALAR_KEYS = {
    'keep_alive': 'keep_alive_accessor',
    'release': 'release_method',
    'borrow_directive': 'borrow_directive',
}


@dataclass(frozen=True)
class Vocabulary:
    """Configured names for one version of the target library."""
    producer_names: FrozenSet[str] = frozenset()
    unambiguous_methods: FrozenSet[str] = frozenset()
    array_returning_methods: FrozenSet[str] = frozenset()
    terminal_methods: FrozenSet[str] = frozenset()
    non_consuming_props: FrozenSet[str] = frozenset()
    safe_callee_names: FrozenSet[str] = frozenset()
    safe_callee_namespaces: FrozenSet[str] = frozenset()
    keep_alive_accessor: str = api_surface.KEEP_ALIVE_ACCESSOR
    release_method: str = api_surface.RELEASE_METHOD
    borrow_directive: str = api_surface.BORROW_DIRECTIVE
    source: str = "custom"

    @classmethod
    def default(cls) -> 'Vocabulary':
        """Build the jax-js table from the extracted API surface.

        Non-consuming props are the extracted getters plus the non-consuming
        methods; array-returning methods are every extracted method that is
        neither terminal nor non-consuming.
        """
        terminal = frozenset(api_surface.TERMINAL_METHODS)
        non_consuming_methods = frozenset(api_surface.NON_CONSUMING_METHODS)
        array_methods = frozenset(
            m for m in api_surface.EXTRACTED_METHODS
            if m not in terminal and m not in non_consuming_methods
        )
        return cls(
            producer_names=frozenset(api_surface.FACTORY_NAMES),
            unambiguous_methods=frozenset(api_surface.UNAMBIGUOUS_ARRAY_METHODS),
            array_returning_methods=array_methods,
            terminal_methods=terminal,
            non_consuming_props=frozenset(api_surface.EXTRACTED_GETTERS) | non_consuming_methods,
            safe_callee_names=frozenset(api_surface.SAFE_CALLEE_NAMES),
            safe_callee_namespaces=frozenset(api_surface.SAFE_CALLEE_NAMESPACES),
            source=f"{api_surface.LIBRARY_NAME} {api_surface.LIBRARY_VERSION}",
        )

    def is_consuming_method(self, name: str) -> bool:
        return name in self.array_returning_methods or name in self.terminal_methods

    def is_terminal_method(self, name: str) -> bool:
        return name in self.terminal_methods

    def is_non_consuming(self, name: str) -> bool:
        return name in self.non_consuming_props

    def is_keep_alive(self, name: str) -> bool:
        return name == self.keep_alive_accessor

    def with_overrides(self, data: dict, source: str = "custom") -> 'Vocabulary':
        """Return a copy with a JSON-style override mapping applied.

        Set-valued keys accept either a list (names are added) or a mapping
        with ``add`` / ``remove`` lists. ``"replace": true`` starts from empty
        sets instead of extending this vocabulary.

        Raises:
            ValueError: If a key has the wrong shape
        """
        base = Vocabulary() if data.get('replace') else self
        changes: Dict[str, object] = {}

        for key, attr in SET_KEYS.items():
            if key not in data:
                continue
            current = set(getattr(base, attr))
            value = data[key]
            if isinstance(value, list):
                current.update(_names(value, key))
            elif isinstance(value, dict):
                current.update(_names(value.get('add', []), key))
                current.difference_update(_names(value.get('remove', []), key))
            else:
                raise ValueError(f"Vocabulary key '{key}' must be a list or an add/remove mapping")
            changes[attr] = frozenset(current)

        for key, attr in SCALAR_KEYS.items():
            if key not in data:
                continue
            value = data[key]
            if not isinstance(value, str) or not value:
                raise ValueError(f"Vocabulary key '{key}' must be a non-empty string")
            changes[attr] = value

        return replace(base, source=source, **changes)

    def describe(self) -> Dict[str, List[str]]:
        """Sorted view of every table, used by the `vocabulary` command."""
        view = {key: sorted(getattr(self, attr)) for key, attr in SET_KEYS.items()}
        for key, attr in SCALAR_KEYS.items():
            view[key] = [getattr(self, attr)]
        return view


def _names(values: Iterable, key: str) -> List[str]:
    names = list(values)
    for name in names:
        if not isinstance(name, str):
            raise ValueError(f"Vocabulary key '{key}' contains a non-string entry: {name!r}")
    return names


@dataclass
class VocabularyRegistry:
    """Loads vocabulary override files on top of the built-in table.

    Files are applied in the order given; a rules directory contributes every
    ``*.json`` file in it, sorted by name. Malformed files are reported and
    skipped so one broken override never disables the linter.
    """
    base: Vocabulary = field(default_factory=Vocabulary.default)
    loaded_files: List[Path] = field(default_factory=list)
    skipped_files: List[Path] = field(default_factory=list)

    def load(self, paths: Iterable[Path]) -> Vocabulary:
        """Apply every override file and return the resulting vocabulary.

        Args:
            paths: JSON files or directories of JSON files

        Returns:
            The merged Vocabulary (the base table when nothing loads)
        """
        vocabulary = self.base
        for path in self._expand(paths):
            data = self._read(path)
            if data is None:
                continue
            try:
                vocabulary = vocabulary.with_overrides(data, source=path.name)
            except ValueError as e:
                safe_print(f"[VocabularyRegistry] WARNING: {path.name}: {e}. Skipping.")
                self.skipped_files.append(path)
                continue
            self.loaded_files.append(path)
        return vocabulary

    def _expand(self, paths: Iterable[Path]) -> List[Path]:
        files = []
        for path in paths:
            path = Path(path)
            if path.is_dir():
                files.extend(sorted(path.glob("*.json")))
            else:
                files.append(path)
        return files

    def _read(self, path: Path) -> Optional[dict]:
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            safe_print(f"[VocabularyRegistry] Error decoding JSON in {path.name}: {e}")
            self.skipped_files.append(path)
            return None
        except OSError as e:
            safe_print(f"[VocabularyRegistry] Error reading {path}: {e}")
            self.skipped_files.append(path)
            return None

        # DO NOT CRASH if the file is a list or a scalar
        if not isinstance(data, dict):
            safe_print(
                f"[VocabularyRegistry] WARNING: {path.name} is malformed "
                f"(expected dict, got {type(data).__name__}). Skipping."
            )
            self.skipped_files.append(path)
            return None
        return data


def load_vocabulary(paths: Iterable[Path] = ()) -> Vocabulary:
    """Built-in table plus any override files."""
    return VocabularyRegistry().load(paths)
