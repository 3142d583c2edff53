"""
Generation collaborators.

A collaborator turns a kind input into a kind result, reporting progress along
the way. Supports two backends: stub (deterministic, offline) and http (an
external generation service).
"""

import hashlib
from collections.abc import Awaitable, Callable
from typing import Any, Protocol
from uuid import UUID

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from worker.config.logging import get_logger
from worker.config.settings import GenerationBackend, Settings
from worker.core.exceptions import (
    AIServiceError,
    AuthenticationError,
    JobTimeoutError,
    JobValidationError,
)
from worker.jobs.models import JobKind
from worker.jobs.schemas import (
    RESULT_MODELS,
    AutoStoryResult,
    CartoonizeResult,
    ImageGenerationResult,
    SceneResult,
    StorybookResult,
)

logger = get_logger(__name__)

ProgressCallback = Callable[[int, str | None], Awaitable[Any]]


class GenerationCollaborator(Protocol):
    """Protocol for external generation backends."""

    name: str

    async def generate(self, data: BaseModel, progress: ProgressCallback) -> BaseModel:
        """Produce the kind result for ``data``, reporting progress as it goes."""
        ...


def _digest(data: BaseModel) -> str:
    return hashlib.sha256(data.model_dump_json().encode("utf-8")).hexdigest()


class StubGenerationCollaborator:
    """
    Deterministic hash-based collaborator for development and testing.

    The same input always yields the same result. No external calls.
    """

    name = "ai"
    backend = "stub"

    def __init__(self, base_url: str = "https://stub.generation.local"):
        self.base_url = base_url.rstrip("/")

    async def generate(self, data: BaseModel, progress: ProgressCallback) -> BaseModel:
        digest = _digest(data)
        await progress(50, f"Generating {data.kind}")

        kind = JobKind(data.kind)
        if kind == JobKind.CARTOONIZE:
            result = CartoonizeResult(url=f"{self.base_url}/cartoons/{digest[:16]}.png")
        elif kind == JobKind.AUTO_STORY:
            result = AutoStoryResult(
                storybook_id=str(UUID(digest[:32])),
                generated_story=(
                    f"A {data.genre} story about {data.character_description}."
                ),
            )
        elif kind == JobKind.IMAGE_GENERATION:
            result = ImageGenerationResult(
                url=f"{self.base_url}/images/{digest[:16]}.png",
                prompt_used=data.image_prompt,
                reused=data.is_reused_image,
            )
        elif kind == JobKind.STORYBOOK:
            pages = [
                {**page, "image_url": f"{self.base_url}/pages/{digest[:12]}-{index}.png"}
                for index, page in enumerate(data.pages, start=1)
            ]
            result = StorybookResult(storybook_id=str(UUID(digest[:32])), pages=pages)
        else:
            paragraphs = [p.strip() for p in data.story.split("\n\n") if p.strip()]
            pages = [
                {"page_number": index, "scenes": [{"description": paragraph}]}
                for index, paragraph in enumerate(paragraphs, start=1)
            ]
            result = SceneResult(pages=pages, character_description="Stub character")

        await progress(90, "Finalizing results")
        return result


class HttpGenerationCollaborator:
    """Collaborator backed by an external generation service over HTTP."""

    name = "ai"
    backend = "http"

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 120.0,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_s,
            headers=headers,
            transport=transport,
        )

    async def generate(self, data: BaseModel, progress: ProgressCallback) -> BaseModel:
        kind = JobKind(data.kind)
        await progress(20, f"Requesting {kind.value} generation")

        try:
            response = await self.client.post(
                f"/v1/generate/{kind.value}", json=data.model_dump(mode="json")
            )
        except httpx.TimeoutException as e:
            raise JobTimeoutError(
                f"Generation service timed out for {kind.value}", collaborator=self.name
            ) from e
        except httpx.HTTPError as e:
            raise AIServiceError(
                f"Generation service unreachable: {e}", collaborator=self.name
            ) from e

        self._raise_for_status(response, kind)

        payload = response.json()
        body = payload.get("data", payload) if isinstance(payload, dict) else payload
        try:
            result = RESULT_MODELS[kind].model_validate({**body, "kind": kind.value})
        except (PydanticValidationError, TypeError) as e:
            raise AIServiceError(
                f"Generation service returned an unexpected {kind.value} result",
                collaborator=self.name,
                details={"error": str(e)},
            ) from e

        await progress(90, "Finalizing results")
        return result

    def _raise_for_status(self, response: httpx.Response, kind: JobKind) -> None:
        if response.status_code < 400:
            return

        message = f"Generation service returned {response.status_code} for {kind.value}"
        details = {"status_code": response.status_code, "body": response.text[:500]}
        if response.status_code in (401, 403):
            raise AuthenticationError(message, collaborator=self.name, details=details)
        if response.status_code in (400, 422):
            raise JobValidationError(message, collaborator=self.name, details=details)
        if response.status_code == 504:
            raise JobTimeoutError(message, collaborator=self.name, details=details)
        raise AIServiceError(message, collaborator=self.name, details=details)

    async def aclose(self) -> None:
        await self.client.aclose()


def build_collaborator(settings: Settings) -> GenerationCollaborator:
    """Build the collaborator selected by ``generation_backend``."""
    if settings.generation_backend == GenerationBackend.HTTP:
        if not settings.generation_base_url:
            raise ValueError("generation_base_url is required for the http backend")
        logger.info("Using http generation backend", base_url=settings.generation_base_url)
        return HttpGenerationCollaborator(
            base_url=settings.generation_base_url,
            timeout_s=settings.generation_timeout_s,
            api_key=settings.generation_api_key,
        )

    logger.info("Using stub generation backend")
    return StubGenerationCollaborator()
