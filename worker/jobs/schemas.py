"""
Pydantic schemas for generation jobs.

Kind-specific payloads are modelled as tagged unions keyed by ``kind`` so that
both the store and the processor can dispatch on the job kind without
guessing payload shapes.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from worker.jobs.models import TERMINAL_STATUSES, JobKind, JobStatus

Audience = Literal["children", "young_adults", "adults"]


class CartoonizeInput(BaseModel):
    kind: Literal["cartoonize"] = "cartoonize"
    prompt: str = ""
    style: str = "cartoon"
    image_url: str | None = None


class CartoonizeResult(BaseModel):
    kind: Literal["cartoonize"] = "cartoonize"
    url: str
    cached: bool = False


class AutoStoryInput(BaseModel):
    kind: Literal["auto-story"] = "auto-story"
    genre: str
    character_description: str
    cartoon_image_url: str | None = None
    audience: Audience = "children"


class AutoStoryResult(BaseModel):
    kind: Literal["auto-story"] = "auto-story"
    storybook_id: str
    generated_story: str | None = None


class ImageGenerationInput(BaseModel):
    kind: Literal["image-generation"] = "image-generation"
    image_prompt: str
    character_description: str | None = None
    emotion: str | None = None
    audience: Audience = "children"
    is_reused_image: bool = False
    cartoon_image: str | None = None
    style: str | None = None


class ImageGenerationResult(BaseModel):
    kind: Literal["image-generation"] = "image-generation"
    url: str
    prompt_used: str | None = None
    reused: bool = False


class StorybookInput(BaseModel):
    kind: Literal["storybook"] = "storybook"
    title: str
    story: str
    character_image: str | None = None
    pages: list[dict[str, Any]] = Field(default_factory=list)
    audience: Audience = "children"
    is_reused_image: bool = False


class StorybookResult(BaseModel):
    kind: Literal["storybook"] = "storybook"
    storybook_id: str
    pages: list[dict[str, Any]] = Field(default_factory=list)
    has_errors: bool = False


class SceneInput(BaseModel):
    kind: Literal["scenes"] = "scenes"
    story: str
    character_image: str | None = None
    audience: Audience = "children"


class SceneResult(BaseModel):
    kind: Literal["scenes"] = "scenes"
    pages: list[dict[str, Any]] = Field(default_factory=list)
    character_description: str | None = None


JobInput = Annotated[
    Union[
        CartoonizeInput,
        AutoStoryInput,
        ImageGenerationInput,
        StorybookInput,
        SceneInput,
    ],
    Field(discriminator="kind"),
]

JobResult = Annotated[
    Union[
        CartoonizeResult,
        AutoStoryResult,
        ImageGenerationResult,
        StorybookResult,
        SceneResult,
    ],
    Field(discriminator="kind"),
]

INPUT_MODELS: dict[JobKind, type[BaseModel]] = {
    JobKind.CARTOONIZE: CartoonizeInput,
    JobKind.AUTO_STORY: AutoStoryInput,
    JobKind.IMAGE_GENERATION: ImageGenerationInput,
    JobKind.STORYBOOK: StorybookInput,
    JobKind.SCENES: SceneInput,
}

RESULT_MODELS: dict[JobKind, type[BaseModel]] = {
    JobKind.CARTOONIZE: CartoonizeResult,
    JobKind.AUTO_STORY: AutoStoryResult,
    JobKind.IMAGE_GENERATION: ImageGenerationResult,
    JobKind.STORYBOOK: StorybookResult,
    JobKind.SCENES: SceneResult,
}


class JobView(BaseModel):
    """Unified job record, independent of the physical table it lives in."""

    model_config = ConfigDict(use_enum_values=False)

    id: str
    kind: JobKind
    status: JobStatus
    progress: int = Field(default=0, ge=0, le=100)
    current_step: str | None = None
    owner_id: str | None = None

    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None

    error_message: str | None = None
    retry_count: int = 0
    max_retries: int = 3

    input_data: JobInput
    result_data: JobResult | None = None

    @model_validator(mode="after")
    def _payload_matches_kind(self) -> "JobView":
        if self.input_data.kind != self.kind.value:
            raise ValueError(
                f"input_data kind {self.input_data.kind!r} does not match job kind {self.kind.value!r}"
            )
        if self.result_data is not None and self.result_data.kind != self.kind.value:
            raise ValueError(
                f"result_data kind {self.result_data.kind!r} does not match job kind {self.kind.value!r}"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class JobFilter(BaseModel):
    """Filters accepted by the list operations."""

    owner_id: str | None = Field(default=None, description="Filter by owning user")
    kind: JobKind | None = Field(default=None, description="Filter by job kind")
    status: JobStatus | None = Field(default=None, description="Filter by status")
    limit: int = Field(default=50, ge=1, le=1000, description="Maximum results")


class JobCreateRequest(BaseModel):
    """Schema for creating a job via the API."""

    kind: JobKind = Field(..., description="Job kind")
    input_data: dict[str, Any] = Field(default_factory=dict, description="Kind input")
    owner_id: str | None = Field(default=None, description="Owning user")
    max_retries: int | None = Field(
        default=None, ge=0, le=10, description="Override the default retry budget"
    )


class JobCreateResponse(BaseModel):
    job_id: str
    kind: JobKind
    status: JobStatus


class JobStatsResponse(BaseModel):
    """Job counts per status across every kind table."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    by_kind: dict[str, int] = Field(default_factory=dict)
