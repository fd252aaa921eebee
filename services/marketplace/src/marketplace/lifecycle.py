from __future__ import annotations

import json
import logging
import math
import uuid

from marketplace.applications import ApplicationService
from marketplace.errors import ConflictError, ForbiddenError, ValidationFailed
from marketplace.lookups import parse_identifier, require_job, require_job_view, require_user
from marketplace.models import (
    JobCreateRequest,
    JobListResponse,
    JobUpdateRequest,
    JobView,
    PublicUserProfile,
    ReviewRequest,
)
from marketplace.repository import DEFAULT_SORT, MarketplaceRepository
from marketplace.retry import retry_transient
from marketplace.reviews import ReviewService

LOGGER = logging.getLogger("marketplace.lifecycle")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


class JobLifecycleService:
    """
    Orchestrates every job operation and enforces ownership.

    Multi-record writes (job + owner's posted list) run inside a single
    repository transaction, so a failure rolls back both records together.
    """

    def __init__(self, repository: MarketplaceRepository, *, unique_titles: bool = True) -> None:
        self.repository = repository
        self.unique_titles = unique_titles
        self.applications = ApplicationService(repository)
        self.reviews = ReviewService(repository)

    @retry_transient()
    def create(self, owner_id: str, payload: JobCreateRequest) -> JobView:
        job_id = str(uuid.uuid4())
        with self.repository.transaction():
            owner = require_user(self.repository, owner_id)
            if self.unique_titles and self.repository.job_title_exists(payload.title):
                raise ConflictError("A job with this title already exists")
            self.repository.insert_job(payload, job_id=job_id, owner_id=owner)
            self.repository.add_job_posted(owner, job_id)

        LOGGER.info(
            json.dumps(
                {
                    "event": "job_created",
                    "job_id": job_id,
                    "owner_id": owner,
                    "category": payload.category,
                }
            )
        )
        return require_job_view(self.repository, job_id)

    @retry_transient()
    def read(self, job_id: str) -> JobView:
        return require_job_view(self.repository, parse_identifier(job_id, "Job"))

    @retry_transient()
    def list_jobs(
        self,
        *,
        query: str | None = None,
        category: str | None = None,
        location: str | None = None,
        sort: str = DEFAULT_SORT,
        page: int = 1,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> JobListResponse:
        if page < 1:
            raise ValidationFailed("page must be at least 1")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationFailed(f"page size must be between 1 and {MAX_PAGE_SIZE}")
        jobs, total = self.repository.search_jobs(
            query=(query or "").strip() or None,
            category=category or None,
            location=(location or "").strip() or None,
            sort=sort,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
        return JobListResponse(
            jobs=jobs,
            total_jobs=total,
            total_pages=math.ceil(total / page_size),
            current_page=page,
            page_size=page_size,
        )

    @retry_transient()
    def update(self, actor_id: str, job_id: str, patch: JobUpdateRequest) -> JobView:
        changes = patch.changes()
        with self.repository.transaction():
            job = require_job(self.repository, job_id)
            if job["owner_id"] != actor_id:
                raise ForbiddenError("Not authorized to modify this job")
            self.repository.update_job(job["id"], changes)

        LOGGER.info(
            json.dumps(
                {
                    "event": "job_updated",
                    "job_id": job["id"],
                    "fields": sorted(changes),
                }
            )
        )
        return require_job_view(self.repository, job["id"])

    @retry_transient()
    def delete(self, actor_id: str, job_id: str) -> str:
        with self.repository.transaction():
            job = require_job(self.repository, job_id)
            if job["owner_id"] != actor_id:
                raise ForbiddenError("Not authorized to delete this job")
            self.repository.remove_job_posted(job["owner_id"], job["id"])
            self.repository.delete_job(job["id"])

        LOGGER.info(json.dumps({"event": "job_deleted", "job_id": job["id"]}))
        return job["id"]

    def apply(self, user_id: str, job_id: str) -> JobView:
        return self.applications.apply(user_id, job_id)

    def decide_application(
        self,
        actor_id: str,
        job_id: str,
        applicant_id: str,
        status: str,
    ) -> JobView:
        return self.applications.decide(actor_id, job_id, applicant_id, status)

    def submit_job_review(self, user_id: str, job_id: str, review: ReviewRequest) -> JobView:
        return self.reviews.submit_job_review(user_id, job_id, review)

    def submit_user_review(
        self,
        reviewer_id: str,
        target_user_id: str,
        review: ReviewRequest,
    ) -> PublicUserProfile:
        return self.reviews.submit_user_review(reviewer_id, target_user_id, review)
