"""Violation records emitted by the lifecycle checks."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple
from tree_sitter import Node

from consumelint.analyzer.classifier import ConsumingSite


class ViolationKind(Enum):
    USE_AFTER_CONSUME = "use-after-consume"
    NEVER_RELEASED = "never-released"
    USELESS_KEEP_ALIVE = "useless-keep-alive"
    KEEP_ALIVE_NEEDS_RELEASE = "keep-alive-needs-release"


@dataclass(eq=False)
class Violation:
    """One lifecycle problem with a binding.

    ``node`` is what the diagnostic points at: the offending reference for
    use-after-consume, the ``.ref`` member expression for keep-alive reports,
    the declared name for never-released. ``release_after`` is the statement a
    release call should follow, when the fix appends one.
    """
    kind: ViolationKind
    name: str
    node: Node
    site: Optional[ConsumingSite] = None
    props: Tuple[str, ...] = field(default_factory=tuple)
    release_after: Optional[Node] = None

    @property
    def line(self) -> int:
        return self.node.start_point[0] + 1

    @property
    def start_byte(self) -> int:
        return self.node.start_byte
