"""Use-after-consume detection: a forward scan over one binding's references.

The lattice per binding is {Unconsumed, ConsumedBy(site, tags)}. The scan
keeps at most one active consuming site. Control-flow tags captured with the
site decide when a later reference can no longer be assumed to run after it:

    1. Write                      -> Unconsumed (new lifecycle segment)
    2. Read while ConsumedBy      -> re-validate tags, then either skip
                                     (argument of the consuming call), promote
                                     or reset (opposite branch of the same
                                     ternary / if), or report
    3. Read while Unconsumed      -> a consuming read becomes the active site
"""
from dataclasses import dataclass
from typing import List, Optional
from tree_sitter import Node

from consumelint.analyzer.classifier import ConsumingSite, ReferenceClassifier, is_consume_and_reassign
from consumelint.analyzer.control_flow import ContextResolver, ControlFlowFacts, contains
from consumelint.analyzer.scope import Reference, Variable
from consumelint.analyzer.violations import Violation, ViolationKind


@dataclass(eq=False)
class ActiveConsumer:
    site: ConsumingSite
    facts: ControlFlowFacts

    def dominates(self, reference: Reference) -> bool:
        """Can ``reference`` still only be reached after the consuming call ran?

        A tag stops dominating once the reference lies at or after the end of
        the tagged construct: the terminating branch, the maybe-skipped
        conditional expression, or the loop.
        """
        position = reference.start_byte
        for tag in (self.facts.terminating_if, self.facts.conditional_ancestor, self.facts.enclosing_loop):
            if tag is not None and position >= tag.end_byte:
                return False
        return True


class ConsumptionStateMachine:
    """Runs the use-after-consume scan for tracked bindings.

    Args:
        classifier: Reference classifier bound to the file's source
        resolver: Control-flow context resolver shared across bindings
    """

    def __init__(self, classifier: ReferenceClassifier, resolver: ContextResolver):
        self.classifier = classifier
        self.resolver = resolver

    def run(self, variable: Variable, declaration_name: Optional[Node] = None) -> List[Violation]:
        """Scan ``variable``'s references in source order.

        Args:
            variable: The tracked binding
            declaration_name: Identifier of the tracked declarator (its
                initializing write is not part of the scan)

        Returns:
            Use-after-consume violations, in source order
        """
        violations: List[Violation] = []
        active: Optional[ActiveConsumer] = None

        for reference in variable.references:
            if declaration_name is not None and reference.identifier == declaration_name:
                continue

            facts = self.resolver.resolve(reference.identifier, reference.scope, variable)

            # Closures run at an unknown time: their references are invisible here
            if facts.crosses_closure:
                continue

            if reference.is_write:
                active = None
                if not self._keeps_tracking(reference, variable):
                    break
                continue

            if not reference.is_read:
                continue

            if active is not None and not active.dominates(reference):
                active = None

            if active is not None:
                identifier = reference.identifier

                # Arguments are evaluated before the call that consumes
                if self.resolver.in_call_arguments(active.site.call, identifier):
                    continue

                owner = self.resolver.exclusive_branches(active.site.identifier, identifier)
                if owner is None:
                    violations.append(Violation(
                        kind=ViolationKind.USE_AFTER_CONSUME,
                        name=variable.name,
                        node=identifier,
                        site=active.site,
                    ))
                    continue

                site = self._site_for(reference, variable, facts)
                if site is not None and self._exhaustive(owner, active.site, site):
                    # Both branches consume: consumption is unconditional past the owner
                    active = self._promote(site, owner)
                    continue
                active = None

            site = self._site_for(reference, variable, facts)
            if site is not None:
                active = ActiveConsumer(site, facts)

        return violations

    def _site_for(self, reference: Reference, variable: Variable,
                  facts: ControlFlowFacts) -> Optional[ConsumingSite]:
        """The consuming site ``reference`` establishes, if it may become active."""
        if facts.unsupported:
            return None
        classification = self.classifier.classify(reference)
        if not classification.is_consuming:
            return None
        if is_consume_and_reassign(reference.identifier, variable.name):
            return None
        return classification.site

    def _exhaustive(self, owner: Node, first: ConsumingSite, second: ConsumingSite) -> bool:
        """Do both sites run whenever their branch of ``owner`` runs?"""
        return (
            self.resolver.unconditional_within(owner, first.identifier)
            and self.resolver.unconditional_within(owner, second.identifier)
        )

    def _promote(self, site: ConsumingSite, owner: Node) -> ActiveConsumer:
        """Active consumer for the second branch of an exhaustive ternary / if.

        The branch's own conditional tag is dropped; a conditional wrapping
        the whole ternary still applies.
        """
        facts = ControlFlowFacts(
            terminating_if=self.resolver.terminating_if(site.identifier),
            conditional_ancestor=self.resolver.conditional_ancestor(owner),
            enclosing_loop=self.resolver.enclosing_loop(site.identifier),
        )
        return ActiveConsumer(site, facts)

    def _keeps_tracking(self, write: Reference, variable: Variable) -> bool:
        """Does the binding still hold a tracked resource after ``write``?

        True for a producer value and for values derived from the binding
        itself (``x = x.add(1)``, ``x = f(x)``); anything else ends tracking.
        """
        value = write.write_value
        if value is None:
            return False
        if self.classifier.is_producer(value):
            return True
        return any(
            ref.is_read and contains(value, ref.identifier)
            for ref in variable.references
        )
