"""CLI command tests.

Commands run against components built over the test database; output is
checked through capsys and the returned exit code.
"""

from datetime import timedelta
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from storyjobs.cli.jobs import parse_args, run_command
from storyjobs.core.config import Settings
from storyjobs.core.dependencies import build_job_system
from storyjobs.core.timezone import utcnow
from storyjobs.models.job import Job, JobStatus, JobType
from storyjobs.services.generation.client import GenerationClient


@pytest_asyncio.fixture
async def system(session_factory):
    settings = Settings(  # type: ignore[call-arg]
        _env_file=None, APP_ENV="test", GENERATION_SERVICE_URL="https://generation.test"
    )
    client = GenerationClient(
        base_url=settings.generation_service_url,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"pages": []})),
    )
    return await build_job_system(settings, session_factory, generation_client=client)


def test_parse_args():
    job_id = uuid4()
    args = parse_args(["process", "--max-jobs", "3", "--type", "scenes", "--type", "cartoonize"])
    assert args.command == "process"
    assert args.max_jobs == 3
    assert args.job_types == [JobType.SCENES, JobType.CARTOONIZE]

    args = parse_args(["-v", "process", "--job-id", str(job_id)])
    assert args.verbose is True
    assert args.job_id == job_id

    assert parse_args(["cleanup"]).days is None


def test_parse_args_rejects_unknown_type():
    with pytest.raises(SystemExit):
        parse_args(["process", "--type", "poetry"])


@pytest.mark.asyncio
async def test_process_command(system, capsys):
    await system.manager.create_scene_job({})
    await system.manager.create_scene_job({})

    exit_code = await run_command(parse_args(["process", "--max-jobs", "5"]), system)

    assert exit_code == 0
    assert "Processed: 2  Errors: 0  Skipped: 0" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_process_single_job_command(system, capsys):
    job_id = (await system.manager.create_scene_job({})).value

    exit_code = await run_command(parse_args(["process", "--job-id", str(job_id)]), system)

    assert exit_code == 0
    assert f"Job {job_id}: processed" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_cleanup_command(system, capsys):
    exit_code = await run_command(parse_args(["cleanup", "--days", "30"]), system)

    assert exit_code == 0
    assert "Deleted 0 jobs older than 30 days" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_health_and_stuck_commands(system, capsys):
    assert await run_command(parse_args(["health"]), system) == 0
    assert '"status": "healthy"' in capsys.readouterr().out

    assert await run_command(parse_args(["stuck"]), system) == 0
    assert "0 stuck job(s)" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_commands_fail_without_database(capsys):
    settings = Settings(_env_file=None, APP_ENV="test")  # type: ignore[call-arg]
    system = await build_job_system(settings, None)

    assert await run_command(parse_args(["health"]), system) == 1
    assert "job store is not available" in capsys.readouterr().err


@pytest.mark.asyncio
async def test_cleanup_command_uses_configured_retention(session_factory, capsys):
    settings = Settings(  # type: ignore[call-arg]
        _env_file=None, APP_ENV="test", JOB_RETENTION_DAYS="3"
    )
    system = await build_job_system(settings, session_factory)
    now = utcnow()
    async with await system.uow_factory() as uow:
        for status, age in ((JobStatus.COMPLETED, 5), (JobStatus.FAILED, 2)):
            await uow.jobs.add(
                Job(type=JobType.SCENES, status=status, completed_at=now - timedelta(days=age))
            )

    exit_code = await run_command(parse_args(["cleanup"]), system)

    assert exit_code == 0
    assert "Deleted 1 jobs older than 3 days" in capsys.readouterr().out
