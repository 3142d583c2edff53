"""
Kind-specific job handlers.

Each handler validates its kind input, reports that work has started and hands
the input to a generation collaborator. Handlers implement the JobHandler
protocol and are registered per kind in the handler registry.
"""

from typing import Any

from pydantic import BaseModel

from worker.config.logging import get_logger
from worker.core.exceptions import AIServiceError, JobValidationError
from worker.jobs.collaborators import GenerationCollaborator
from worker.jobs.models import JobKind
from worker.jobs.schemas import RESULT_MODELS, JobView

logger = get_logger(__name__)


class ProgressReporter:
    """Progress callback bound to one job."""

    def __init__(self, store: Any, job_id: str):
        self.store = store
        self.job_id = job_id

    async def __call__(self, progress: int, step: str | None = None) -> bool:
        return await self.store.update_progress(self.job_id, progress, step)


class GenerationJobHandler:
    kind: JobKind
    start_step: str

    def __init__(self, collaborator: GenerationCollaborator):
        self.collaborator = collaborator

    @property
    def collaborator_name(self) -> str:
        return self.collaborator.name

    def validate(self, data: BaseModel) -> None:
        """Raise JobValidationError when the input cannot be generated from."""

    def _require(self, data: BaseModel, *fields: str) -> None:
        missing = [name for name in fields if not getattr(data, name, None)]
        if missing:
            raise JobValidationError(
                f"Invalid {self.kind.value} input: missing {', '.join(missing)}",
                details={"missing": missing},
            )

    async def handle(self, job: JobView, reporter: ProgressReporter) -> BaseModel:
        data = job.input_data
        if data.kind != self.kind.value:
            raise JobValidationError(
                f"Handler for {self.kind.value} received {data.kind} input"
            )
        self.validate(data)

        await reporter(10, self.start_step)
        result = await self.collaborator.generate(data, reporter)

        if not isinstance(result, RESULT_MODELS[self.kind]):
            raise AIServiceError(
                f"Collaborator returned {type(result).__name__} for {self.kind.value}",
                collaborator=self.collaborator_name,
            )

        logger.debug("Generation finished", job_id=job.id, kind=self.kind.value)
        return result


class CartoonizeHandler(GenerationJobHandler):
    kind = JobKind.CARTOONIZE
    start_step = "Cartoonizing image"

    def validate(self, data: BaseModel) -> None:
        if not data.prompt and not data.image_url:
            raise JobValidationError(
                "Invalid cartoonize input: prompt or image_url is required"
            )


class AutoStoryHandler(GenerationJobHandler):
    kind = JobKind.AUTO_STORY
    start_step = "Writing story"

    def validate(self, data: BaseModel) -> None:
        self._require(data, "genre", "character_description")


class ImageGenerationHandler(GenerationJobHandler):
    kind = JobKind.IMAGE_GENERATION
    start_step = "Generating image"

    def validate(self, data: BaseModel) -> None:
        self._require(data, "image_prompt")


class StorybookHandler(GenerationJobHandler):
    kind = JobKind.STORYBOOK
    start_step = "Illustrating storybook pages"

    def validate(self, data: BaseModel) -> None:
        self._require(data, "title", "story")


class SceneHandler(GenerationJobHandler):
    kind = JobKind.SCENES
    start_step = "Breaking story into scenes"

    def validate(self, data: BaseModel) -> None:
        self._require(data, "story")


HANDLER_CLASSES: tuple[type[GenerationJobHandler], ...] = (
    CartoonizeHandler,
    AutoStoryHandler,
    ImageGenerationHandler,
    StorybookHandler,
    SceneHandler,
)
