"""SequenceResolver — computes the effective step sequence for a session.

The effective sequence is::

    [preEntryGate sub-flow] + base[:-1] + [preReward sub-flow] + base[-1:]

The pre-reward sub-flow lands immediately before the last base step (the
terminal ``reward`` step).  Resolution is a pure function of the flow
definition and the session's extras state, so identical inputs always
yield the identical sequence.
"""

from __future__ import annotations

from typing import Optional

from flow_engine.extras import ExtrasPolicyEvaluator
from flow_engine.models.enums import ExtraSlot
from flow_engine.models.experience import FlowDefinition
from flow_engine.models.session import SequenceEntry, Session


class SequenceResolver:
    """Stateless resolver bound to one flow definition."""

    def __init__(self, definition: FlowDefinition) -> None:
        self._definition = definition

    @property
    def definition(self) -> FlowDefinition:
        return self._definition

    def slot_active(
        self,
        slot: ExtraSlot,
        session: Session,
        decisions: Optional[dict[ExtraSlot, bool]] = None,
    ) -> bool:
        """Whether *slot* is part of the sequence for *session*.

        A frozen decision wins (from *decisions* first, then the session);
        otherwise the policy is evaluated provisionally.
        """
        decision = (decisions or {}).get(slot, session.slot_decisions.get(slot))
        if decision is not None:
            return decision
        return ExtrasPolicyEvaluator.should_run(slot, self._definition, session)

    def resolve(
        self,
        session: Session,
        decisions: Optional[dict[ExtraSlot, bool]] = None,
    ) -> list[SequenceEntry]:
        """Return the effective sequence.

        *decisions* are prospective slot decisions layered over the ones
        already frozen on the session.
        """
        definition = self._definition
        base_id = definition.experience.id
        base = [SequenceEntry(step=s, experience_id=base_id) for s in definition.base_steps()]

        def slot_entries(slot: ExtraSlot) -> list[SequenceEntry]:
            if not self.slot_active(slot, session, decisions):
                return []
            sub_flow = definition.sub_flows[slot]
            return [
                SequenceEntry(step=s, experience_id=sub_flow.id, slot=slot)
                for s in sub_flow.ordered_steps()
            ]

        gate = slot_entries(ExtraSlot.PRE_ENTRY_GATE)
        pre_reward = slot_entries(ExtraSlot.PRE_REWARD)
        return gate + base[:-1] + pre_reward + base[-1:]

    def insertion_index(
        self,
        slot: ExtraSlot,
        session: Session,
        decisions: Optional[dict[ExtraSlot, bool]] = None,
    ) -> int:
        """Position at which *slot*'s first step appears (or would appear)."""
        if slot == ExtraSlot.PRE_ENTRY_GATE:
            return 0
        gate_len = 0
        if self.slot_active(ExtraSlot.PRE_ENTRY_GATE, session, decisions):
            gate_len = len(self._definition.slot_steps(ExtraSlot.PRE_ENTRY_GATE))
        return gate_len + max(len(self._definition.base_steps()) - 1, 0)
