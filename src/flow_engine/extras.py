"""ExtrasPolicyEvaluator — decides whether a slot's sub-flow runs.

Unresolvable sub-flows fail open: the slot is dropped and the decision is
logged, but the main flow is never blocked.
"""

from __future__ import annotations

import logging
from typing import Optional

from flow_engine.constants import SLOT_ORDER
from flow_engine.interfaces import ExperienceProvider
from flow_engine.models.enums import ExtraSlot, Frequency
from flow_engine.models.experience import Experience, ExtrasConfig, FlowDefinition
from flow_engine.models.session import Session

logger = logging.getLogger(__name__)


class ExtrasPolicyEvaluator:
    """Evaluates slot frequency policies against a session.

    Args:
        experiences: provider used to resolve each slot's sub-flow
    """

    def __init__(self, experiences: ExperienceProvider) -> None:
        self._experiences = experiences

    def resolve_sub_flows(
        self,
        extras: ExtrasConfig,
        base: Experience,
    ) -> dict[ExtraSlot, Experience]:
        """Resolve the sub-flow for every configured, enabled slot.

        A slot is excluded (with a warning) when its link is disabled, the
        sub-flow is missing or deleted, the sub-flow has no steps, or one of
        its step ids collides with a step already in the sequence.
        """
        sub_flows: dict[ExtraSlot, Experience] = {}
        taken = {s.id for s in base.steps}
        for slot in SLOT_ORDER:
            link = extras.get(slot)
            if link is None:
                continue
            if not link.enabled:
                logger.info("Slot %s disabled; sub-flow %s skipped", slot.value, link.experience_id)
                continue
            sub_flow = self._lookup(link.experience_id)
            if sub_flow is None:
                logger.warning(
                    "Slot %s references missing experience %s; slot skipped",
                    slot.value, link.experience_id,
                )
                continue
            if not sub_flow.steps:
                logger.warning(
                    "Slot %s sub-flow %s has no steps; slot skipped",
                    slot.value, link.experience_id,
                )
                continue
            ids = {s.id for s in sub_flow.steps}
            clashes = ids & taken
            if clashes:
                logger.warning(
                    "Slot %s sub-flow %s reuses step ids %s; slot skipped",
                    slot.value, link.experience_id, sorted(clashes),
                )
                continue
            taken |= ids
            sub_flows[slot] = sub_flow
        return sub_flows

    def _lookup(self, experience_id: str) -> Optional[Experience]:
        experience = self._experiences.get_experience(experience_id)
        if experience is None or not experience.is_active:
            return None
        return experience

    @staticmethod
    def should_run(slot: ExtraSlot, definition: FlowDefinition, session: Session) -> bool:
        """Return True if *slot*'s sub-flow executes at its insertion point.

        False when the slot has no configuration or its sub-flow could not
        be resolved.  ``always`` runs every time; ``once_per_session`` runs
        only while the slot is absent from ``session.extras_seen``.
        """
        link = definition.extras.get(slot)
        if link is None or not link.enabled or slot not in definition.sub_flows:
            return False
        if link.frequency == Frequency.ALWAYS:
            return True
        return slot not in session.extras_seen
