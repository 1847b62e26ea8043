"""Per-type job variants.

Each job type is resolved once to a ``JobTypeSpec`` that knows its initial step
label, its progress phases, how long a progress point takes, and how to shape
results and metadata for status responses.
"""

import math
from dataclasses import dataclass
from typing import Any, Callable

from storyjobs.models.job import JobStatus, JobType


@dataclass(frozen=True)
class JobTypeSpec:
    job_type: JobType
    label: str
    phases: tuple[tuple[int, str], ...]  # (progress upper bound, phase label)
    seconds_per_point: float
    format_result: Callable[[dict[str, Any]], dict[str, Any]]
    metadata_keys: tuple[str, ...] = ()

    @property
    def initial_step(self) -> str:
        return f"Initializing {self.label}"

    def current_phase(self, progress: int) -> str | None:
        """Label of the phase ``progress`` falls in; None once the job is done."""
        if progress >= 100:
            return None
        for upper_bound, phase in self.phases:
            if progress < upper_bound:
                return phase
        return self.phases[-1][1]

    def estimate_time_remaining(self, progress: int, status: JobStatus | str) -> str | None:
        """Rough human-readable estimate, only for processing jobs."""
        if status != JobStatus.PROCESSING or progress >= 100:
            return None
        seconds = max(30.0, (100 - progress) * self.seconds_per_point)
        if seconds < 60:
            return f"{math.ceil(seconds)} seconds"
        return f"{math.ceil(seconds / 60)} minutes"

    def build_metadata(self, input_data: dict[str, Any], user_id: Any) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "type": self.job_type.value,
            "user_id": str(user_id) if user_id else None,
        }
        for key in self.metadata_keys:
            if key in input_data:
                metadata[key] = input_data[key]
        return metadata


def _format_storybook(result: dict[str, Any]) -> dict[str, Any]:
    return {
        "storybook_id": result.get("storybook_id"),
        "pages": result.get("pages", []),
        "has_errors": bool(result.get("has_errors", False)),
    }


def _format_auto_story(result: dict[str, Any]) -> dict[str, Any]:
    return {
        "storybook_id": result.get("storybook_id"),
        "generated_story": result.get("generated_story"),
    }


def _format_scenes(result: dict[str, Any]) -> dict[str, Any]:
    return {
        "pages": result.get("pages", []),
        "character_description": result.get("character_description"),
    }


def _format_cartoonize(result: dict[str, Any]) -> dict[str, Any]:
    permanent_url = result.get("permanent_url")
    return {
        "url": result.get("url"),
        "permanent_url": permanent_url,
        "cached": bool(permanent_url),
        "style": result.get("style", "semi-realistic"),
    }


def _format_image(result: dict[str, Any]) -> dict[str, Any]:
    return {
        "url": result.get("url"),
        "prompt_used": result.get("prompt_used"),
        "reused": bool(result.get("reused", False)),
    }


JOB_TYPE_SPECS: dict[JobType, JobTypeSpec] = {
    JobType.STORYBOOK: JobTypeSpec(
        job_type=JobType.STORYBOOK,
        label="storybook generation",
        phases=(
            (25, "Analyzing story content"),
            (50, "Creating comic book panel breakdown"),
            (90, "Generating character-consistent panel illustrations"),
            (100, "Assembling comic book pages"),
        ),
        seconds_per_point=6.0,
        format_result=_format_storybook,
        metadata_keys=("title", "audience", "character_art_style", "layout_type"),
    ),
    JobType.AUTO_STORY: JobTypeSpec(
        job_type=JobType.AUTO_STORY,
        label="auto-story generation",
        phases=(
            (25, "Generating story content"),
            (50, "Creating scene breakdown"),
            (90, "Generating illustrations"),
            (100, "Assembling final storybook"),
        ),
        seconds_per_point=3.0,
        format_result=_format_auto_story,
        metadata_keys=("genre", "audience", "character_art_style", "layout_type"),
    ),
    JobType.SCENES: JobTypeSpec(
        job_type=JobType.SCENES,
        label="scene generation",
        phases=(
            (30, "Analyzing story structure"),
            (60, "Breaking down into scenes"),
            (90, "Creating visual descriptions"),
            (100, "Finalizing scene layout"),
        ),
        seconds_per_point=1.8,
        format_result=_format_scenes,
        metadata_keys=("audience",),
    ),
    JobType.CARTOONIZE: JobTypeSpec(
        job_type=JobType.CARTOONIZE,
        label="image cartoonization",
        phases=(
            (20, "Analyzing image content"),
            (50, "Generating cartoon style"),
            (80, "Applying artistic filters"),
            (100, "Finalizing cartoon image"),
        ),
        seconds_per_point=1.2,
        format_result=_format_cartoonize,
        metadata_keys=("style",),
    ),
    JobType.IMAGE_GENERATION: JobTypeSpec(
        job_type=JobType.IMAGE_GENERATION,
        label="image generation",
        phases=(
            (25, "Processing scene description"),
            (50, "Generating base composition"),
            (75, "Adding character details"),
            (100, "Finalizing illustration"),
        ),
        seconds_per_point=1.5,
        format_result=_format_image,
        metadata_keys=("style", "audience", "emotion"),
    ),
}


def get_job_type_spec(job_type: JobType | str) -> JobTypeSpec:
    """Resolve a job type to its variant.

    Raises:
        ValueError: If ``job_type`` is not a known job type
    """
    return JOB_TYPE_SPECS[JobType(job_type)]
