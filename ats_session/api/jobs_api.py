"""Typed wrappers over the public job and candidate application endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeVar

from pydantic import TypeAdapter, ValidationError

from ats_session.api.errors import ResponseDecodeError
from ats_session.api.schemas import Application, Category, Job, Page, SavedJob

if TYPE_CHECKING:
    from collections.abc import Mapping

    from ats_session.api.pipeline import JSONBody, RequestPipeline

JOBS_ENDPOINT = "/jobs/list/"
FEATURED_JOBS_ENDPOINT = "/jobs/list/featured/"
CATEGORIES_ENDPOINT = "/jobs/categories/"
SAVED_JOBS_ENDPOINT = "/jobs/saved/"
MY_APPLICATIONS_ENDPOINT = "/applications/my/"

T = TypeVar("T")

_JOB_PAGE = TypeAdapter(Page[Job])
_SAVED_JOB_PAGE = TypeAdapter(Page[SavedJob])
_APPLICATION_PAGE = TypeAdapter(Page[Application])
_JOB = TypeAdapter(Job)
_JOB_LIST = TypeAdapter(list[Job])
_CATEGORY_LIST = TypeAdapter(list[Category])
_APPLICATION = TypeAdapter(Application)


class JobsApi:
    """Job board reads plus the signed-in candidate's saved jobs and applications."""

    _pipeline: RequestPipeline

    def __init__(self, pipeline: RequestPipeline) -> None:
        """Bind endpoint wrappers to one request pipeline."""
        self._pipeline = pipeline

    async def list_jobs(self, params: Mapping[str, str] | None = None) -> Page[Job]:
        """List jobs; `params` are passed through as query filters."""
        body = await self._pipeline.get(JOBS_ENDPOINT, params=params)
        return _validate(_JOB_PAGE, body, endpoint=JOBS_ENDPOINT)

    async def get_job(self, slug: str) -> Job:
        """Fetch one job by slug."""
        endpoint = f"{JOBS_ENDPOINT}{slug}/"
        body = await self._pipeline.get(endpoint)
        return _validate(_JOB, body, endpoint=endpoint)

    async def featured_jobs(self) -> list[Job]:
        """Fetch featured jobs."""
        body = await self._pipeline.get(FEATURED_JOBS_ENDPOINT)
        return _validate(_JOB_LIST, body, endpoint=FEATURED_JOBS_ENDPOINT)

    async def categories(self) -> list[Category]:
        """Fetch job categories."""
        body = await self._pipeline.get(CATEGORIES_ENDPOINT)
        return _validate(_CATEGORY_LIST, body, endpoint=CATEGORIES_ENDPOINT)

    async def save_job(self, job_id: int) -> None:
        """Bookmark a job."""
        _ = await self._pipeline.post(SAVED_JOBS_ENDPOINT, {"job_id": job_id})

    async def unsave_job(self, job_id: int) -> None:
        """Remove a job bookmark."""
        _ = await self._pipeline.delete(f"{SAVED_JOBS_ENDPOINT}job/{job_id}/")

    async def saved_jobs(self) -> Page[SavedJob]:
        """List bookmarked jobs."""
        body = await self._pipeline.get(SAVED_JOBS_ENDPOINT)
        return _validate(_SAVED_JOB_PAGE, body, endpoint=SAVED_JOBS_ENDPOINT)

    async def my_applications(self) -> Page[Application]:
        """List the signed-in candidate's applications."""
        body = await self._pipeline.get(MY_APPLICATIONS_ENDPOINT)
        return _validate(_APPLICATION_PAGE, body, endpoint=MY_APPLICATIONS_ENDPOINT)

    async def apply(
        self,
        job_id: int,
        *,
        cover_letter: str | None = None,
        portfolio_url: str | None = None,
        linkedin_url: str | None = None,
    ) -> Application:
        """Apply to a job."""
        payload: dict[str, object] = {"job": job_id}
        optional = {
            "cover_letter": cover_letter,
            "portfolio_url": portfolio_url,
            "linkedin_url": linkedin_url,
        }
        payload.update({key: value for key, value in optional.items() if value})
        body = await self._pipeline.post(MY_APPLICATIONS_ENDPOINT, payload)
        return _validate(_APPLICATION, body, endpoint=MY_APPLICATIONS_ENDPOINT)

    async def withdraw_application(self, application_id: int) -> None:
        """Withdraw one of the candidate's applications."""
        _ = await self._pipeline.delete(
            f"{MY_APPLICATIONS_ENDPOINT}{application_id}/",
        )


def _validate(adapter: TypeAdapter[T], body: JSONBody, *, endpoint: str) -> T:
    """Validate a decoded body with a prepared type adapter."""
    try:
        return adapter.validate_python(body)
    except ValidationError as exc:
        raise ResponseDecodeError.for_endpoint(
            endpoint,
            details=f"{exc.error_count()} validation error(s)",
        ) from exc
