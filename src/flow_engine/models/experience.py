"""Experience and extras configuration models.

An ``Experience`` is a reusable, ordered template of steps.  An event may
attach optional sub-flows (other experiences) to named slots through its
``ExtrasConfig``.  Both are read-only inputs to the engine.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from flow_engine.models.enums import ExperienceStatus, ExtraSlot, Frequency
from flow_engine.models.step import Step


class Experience(BaseModel):
    """A named template of steps.

    ``step_order`` lists step ids in presentation order.  When omitted the
    order of ``steps`` is used.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    status: ExperienceStatus = ExperienceStatus.ACTIVE
    steps: list[Step] = Field(default_factory=list)
    step_order: Optional[list[str]] = None

    @model_validator(mode="after")
    def _check_step_ids(self) -> "Experience":
        ids = [s.id for s in self.steps]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Experience {self.id!r} has duplicate step ids")
        if self.step_order is not None:
            unknown = [sid for sid in self.step_order if sid not in ids]
            if unknown:
                raise ValueError(
                    f"Experience {self.id!r} step_order references unknown steps: {unknown}"
                )
        return self

    @property
    def is_active(self) -> bool:
        return self.status == ExperienceStatus.ACTIVE

    def ordered_steps(self) -> list[Step]:
        """Return the steps in presentation order."""
        if self.step_order is None:
            return list(self.steps)
        by_id = {s.id: s for s in self.steps}
        return [by_id[sid] for sid in self.step_order]

    def get_step(self, step_id: str) -> Step:
        for step in self.steps:
            if step.id == step_id:
                return step
        raise KeyError(f"Step {step_id!r} not found in experience {self.id!r}")


class ExtraSlotConfig(BaseModel):
    """Link from a slot to a sub-flow experience."""

    model_config = ConfigDict(frozen=True)

    experience_id: str
    frequency: Frequency = Frequency.ALWAYS
    enabled: bool = True
    label: Optional[str] = None


class ExtrasConfig(BaseModel):
    """Per-event slot configuration; at most one link per slot."""

    model_config = ConfigDict(frozen=True)

    pre_entry_gate: Optional[ExtraSlotConfig] = None
    pre_reward: Optional[ExtraSlotConfig] = None

    def get(self, slot: ExtraSlot) -> Optional[ExtraSlotConfig]:
        if slot == ExtraSlot.PRE_ENTRY_GATE:
            return self.pre_entry_gate
        return self.pre_reward


class FlowDefinition(BaseModel):
    """Everything the engine needs to run one session, fixed at start.

    ``sub_flows`` only contains slots whose linked experience could be
    resolved; unresolvable slots are dropped before the session begins.
    """

    model_config = ConfigDict(frozen=True)

    experience: Experience
    extras: ExtrasConfig = Field(default_factory=ExtrasConfig)
    sub_flows: dict[ExtraSlot, Experience] = Field(default_factory=dict)

    def base_steps(self) -> list[Step]:
        return self.experience.ordered_steps()

    def slot_steps(self, slot: ExtraSlot) -> list[Step]:
        sub_flow = self.sub_flows.get(slot)
        if sub_flow is None:
            return []
        return sub_flow.ordered_steps()


class EventConfig(BaseModel):
    """Host event: which experience it runs by default and its extras."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    experience_id: Optional[str] = None
    extras: ExtrasConfig = Field(default_factory=ExtrasConfig)
