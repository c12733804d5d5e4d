"""Tests for job board and candidate application endpoint wrappers."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from ats_session.api import ApiError, Job, JobsApi, Page

if TYPE_CHECKING:
    from ats_session.session import SessionManager
    from tests.mocks.fake_auth_server import FakeAuthServer

REGISTERED_PHONE = "09120000001"
REGISTERED_PASSWORD = "secret123"  # noqa: S105
BACKEND_JOB_ID = 11
FRONTEND_JOB_ID = 12


@pytest.mark.asyncio
async def test_list_jobs_decodes_page_and_forwards_filters(
    session_manager: SessionManager,
) -> None:
    """Ensure list endpoints decode the paging envelope and pass query params."""
    jobs = session_manager.jobs

    everything = await jobs.list_jobs()
    filtered = await jobs.list_jobs({"search": "backend"})

    if not isinstance(everything, Page) or everything.count != 2:  # noqa: PLR2004
        raise AssertionError
    if [job.slug for job in filtered.results] != ["backend-engineer"]:
        raise AssertionError
    if filtered.next is not None or filtered.previous is not None:
        raise AssertionError


@pytest.mark.asyncio
async def test_job_detail_featured_and_categories(
    session_manager: SessionManager,
) -> None:
    """Ensure single-object and bare-list endpoints decode into models."""
    jobs = session_manager.jobs

    job = await jobs.get_job("frontend-engineer")
    featured = await jobs.featured_jobs()
    categories = await jobs.categories()

    if not isinstance(job, Job) or job.id != FRONTEND_JOB_ID or not job.is_remote:
        raise AssertionError
    if [item.id for item in featured] != [BACKEND_JOB_ID]:
        raise AssertionError
    if job.category is None or categories[0].slug != job.category.slug:
        raise AssertionError


@pytest.mark.asyncio
async def test_missing_job_raises_api_error(session_manager: SessionManager) -> None:
    """Ensure a 404 detail body is surfaced through ApiError."""
    with pytest.raises(ApiError) as exc_info:
        _ = await session_manager.jobs.get_job("does-not-exist")

    if exc_info.value.data != {"detail": "Not found."}:
        raise AssertionError


@pytest.mark.asyncio
async def test_saved_jobs_and_applications_for_signed_in_candidate(
    session_manager: SessionManager,
    fake_server: FakeAuthServer,
) -> None:
    """Ensure bookmark and application calls carry the session's bearer token."""
    if not await session_manager.login(REGISTERED_PHONE, REGISTERED_PASSWORD):
        raise AssertionError
    jobs: JobsApi = session_manager.jobs

    await jobs.save_job(BACKEND_JOB_ID)
    saved = await jobs.saved_jobs()
    await jobs.unsave_job(BACKEND_JOB_ID)
    after_unsave = await jobs.saved_jobs()

    application = await jobs.apply(BACKEND_JOB_ID, cover_letter="Hello")
    fake_server.expire_access_tokens()
    mine = await jobs.my_applications()
    await jobs.withdraw_application(application.id)
    after_withdraw = await jobs.my_applications()

    if [item.job.id for item in saved.results] != [BACKEND_JOB_ID]:
        raise AssertionError
    if after_unsave.count != 0:
        raise AssertionError
    if application.job != BACKEND_JOB_ID or application.status != "pending":
        raise AssertionError
    if [item.id for item in mine.results] != [application.id]:
        raise AssertionError
    if after_withdraw.results:
        raise AssertionError
    if fake_server.count("refresh") != 1:
        raise AssertionError


@pytest.mark.asyncio
async def test_duplicate_application_surfaces_non_field_error(
    session_manager: SessionManager,
) -> None:
    """Ensure validation bodies without field keys reach the caller intact."""
    _ = await session_manager.login(REGISTERED_PHONE, REGISTERED_PASSWORD)
    _ = await session_manager.jobs.apply(BACKEND_JOB_ID)

    with pytest.raises(ApiError) as exc_info:
        _ = await session_manager.jobs.apply(BACKEND_JOB_ID)

    expected = {"non_field_errors": ["You have already applied to this job."]}
    if exc_info.value.data != expected:
        raise AssertionError
