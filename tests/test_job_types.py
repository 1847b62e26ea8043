"""Job type variant tests: phases, time estimates, metadata and result shaping."""

import pytest

from storyjobs.models.job import JobStatus, JobType
from storyjobs.services.jobs.job_types import JOB_TYPE_SPECS, get_job_type_spec


def test_every_job_type_has_a_spec():
    assert set(JOB_TYPE_SPECS) == set(JobType)


def test_lookup_by_value_and_unknown_type():
    assert get_job_type_spec("auto-story").job_type == JobType.AUTO_STORY
    with pytest.raises(ValueError):
        get_job_type_spec("poetry")


def test_current_phase_follows_progress():
    spec = get_job_type_spec(JobType.CARTOONIZE)

    assert spec.current_phase(0) == "Analyzing image content"
    assert spec.current_phase(20) == "Generating cartoon style"
    assert spec.current_phase(79) == "Applying artistic filters"
    assert spec.current_phase(95) == "Finalizing cartoon image"
    assert spec.current_phase(100) is None


def test_time_estimate_only_while_processing():
    spec = get_job_type_spec(JobType.STORYBOOK)

    assert spec.estimate_time_remaining(50, JobStatus.PENDING) is None
    assert spec.estimate_time_remaining(100, JobStatus.PROCESSING) is None
    assert spec.estimate_time_remaining(50, JobStatus.PROCESSING) == "5 minutes"
    # Never below 30 seconds
    assert get_job_type_spec(JobType.CARTOONIZE).estimate_time_remaining(
        99, JobStatus.PROCESSING
    ) == "30 seconds"


def test_metadata_picks_known_input_keys():
    spec = get_job_type_spec(JobType.IMAGE_GENERATION)
    metadata = spec.build_metadata(
        {"style": "watercolor", "emotion": "happy", "scene": "long text"}, None
    )

    assert metadata == {
        "type": "image-generation",
        "user_id": None,
        "style": "watercolor",
        "emotion": "happy",
    }


def test_format_results():
    cartoon = get_job_type_spec(JobType.CARTOONIZE).format_result(
        {"url": "https://img.test/a.png", "permanent_url": "https://cdn.test/a.png"}
    )
    assert cartoon == {
        "url": "https://img.test/a.png",
        "permanent_url": "https://cdn.test/a.png",
        "cached": True,
        "style": "semi-realistic",
    }

    storybook = get_job_type_spec(JobType.STORYBOOK).format_result({"storybook_id": "sb-1"})
    assert storybook == {"storybook_id": "sb-1", "pages": [], "has_errors": False}
