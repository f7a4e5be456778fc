"""Step type models for experiences.

Each step kind maps to a specific UI component on the host side:

  Input / display (opaque to the engine):
    - info: static content with a continue button
    - capture: camera or upload, produces a media reference
    - short_text / long_text: free text input
    - multiple_choice: pick one or more options
    - yes_no: binary choice
    - opinion_scale: numeric scale between min and max
    - email: email address input
    - processing: loading screen shown while something happens
    - reward: terminal step showing the final result

  Engine-managed:
    - ai-transform: submits a job to the external job runner and
      self-advances when it completes

The discriminated ``Step`` union uses ``type`` as its discriminator.
The ``step_mapper`` dict maps type strings to their Pydantic classes.
"""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, model_validator


# --- Base step type ---

class BaseStep(BaseModel):
    """Fields shared by all step kinds."""

    id: str
    # Human readable name; also usable as a prompt variable
    name: Optional[str] = None

    @property
    def is_transform(self) -> bool:
        return self.type == "ai-transform"


# --- Shared config models ---

class ChoiceOption(BaseModel):
    id: str
    label: str


class InfoConfig(BaseModel):
    title: Optional[str] = None
    body: Optional[str] = None
    button_label: str = "Continue"


class CaptureConfig(BaseModel):
    mode: Literal["photo", "video", "gif"] = "photo"
    countdown: int = 3
    allow_upload: bool = True


class TextConfig(BaseModel):
    """Display hints for text steps.  Input is checked by the host before ``complete``."""

    label: Optional[str] = None
    placeholder: Optional[str] = None
    max_length: Optional[int] = None


class MultipleChoiceConfig(BaseModel):
    question: str
    options: List[ChoiceOption]
    allow_multiple: bool = False


class YesNoConfig(BaseModel):
    question: str
    yes_label: str = "Yes"
    no_label: str = "No"


class OpinionScaleConfig(BaseModel):
    question: str
    min: int = 1
    max: int = 5
    min_label: Optional[str] = None
    max_label: Optional[str] = None

    @model_validator(mode="after")
    def _check_bounds(self) -> "OpinionScaleConfig":
        if self.min >= self.max:
            raise ValueError(
                f"opinion_scale min ({self.min}) must be less than max ({self.max})"
            )
        return self


class EmailConfig(BaseModel):
    label: Optional[str] = None
    consent_text: Optional[str] = None


class AiTransformConfig(BaseModel):
    """Configuration for an ai-transform step.

    ``prompt`` is a Jinja2 template rendered against the collected session
    data.  A blank prompt switches the step to passthrough mode: the source
    media is copied to the result without contacting the job runner.
    """

    prompt: str = ""
    model: Optional[str] = None
    aspect_ratio: Optional[str] = None
    # Step whose value is used as the source media; defaults to the most
    # recent capture step
    source_step_id: Optional[str] = None
    reference_images: List[str] = Field(default_factory=list)


class ProcessingConfig(BaseModel):
    message: Optional[str] = None


class RewardConfig(BaseModel):
    title: Optional[str] = None
    show_result: bool = True
    allow_download: bool = True


# --- Step kinds ---

class InfoStep(BaseStep):
    type: Literal["info"] = "info"
    config: InfoConfig = Field(default_factory=InfoConfig)


class CaptureStep(BaseStep):
    type: Literal["capture"] = "capture"
    config: CaptureConfig = Field(default_factory=CaptureConfig)


class ShortTextStep(BaseStep):
    type: Literal["short_text"] = "short_text"
    config: TextConfig = Field(default_factory=TextConfig)


class LongTextStep(BaseStep):
    type: Literal["long_text"] = "long_text"
    config: TextConfig = Field(default_factory=TextConfig)


class MultipleChoiceStep(BaseStep):
    type: Literal["multiple_choice"] = "multiple_choice"
    config: MultipleChoiceConfig


class YesNoStep(BaseStep):
    type: Literal["yes_no"] = "yes_no"
    config: YesNoConfig


class OpinionScaleStep(BaseStep):
    type: Literal["opinion_scale"] = "opinion_scale"
    config: OpinionScaleConfig


class EmailStep(BaseStep):
    type: Literal["email"] = "email"
    config: EmailConfig = Field(default_factory=EmailConfig)


class AiTransformStep(BaseStep):
    type: Literal["ai-transform"] = "ai-transform"
    config: AiTransformConfig = Field(default_factory=AiTransformConfig)


class ProcessingStep(BaseStep):
    type: Literal["processing"] = "processing"
    config: ProcessingConfig = Field(default_factory=ProcessingConfig)


class RewardStep(BaseStep):
    type: Literal["reward"] = "reward"
    config: RewardConfig = Field(default_factory=RewardConfig)


# --- Discriminated union of all step kinds ---

Step = Annotated[
    Union[
        InfoStep,
        CaptureStep,
        ShortTextStep,
        LongTextStep,
        MultipleChoiceStep,
        YesNoStep,
        OpinionScaleStep,
        EmailStep,
        AiTransformStep,
        ProcessingStep,
        RewardStep,
    ],
    Field(discriminator="type"),
]

# Maps type string -> Pydantic class for dynamic deserialization from YAML.
step_mapper = {
    "info": InfoStep,
    "capture": CaptureStep,
    "short_text": ShortTextStep,
    "long_text": LongTextStep,
    "multiple_choice": MultipleChoiceStep,
    "yes_no": YesNoStep,
    "opinion_scale": OpinionScaleStep,
    "email": EmailStep,
    "ai-transform": AiTransformStep,
    "processing": ProcessingStep,
    "reward": RewardStep,
}
