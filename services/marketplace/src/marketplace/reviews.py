from __future__ import annotations

import json
import logging
import sqlite3

from marketplace.errors import ConflictError, InvalidStateError, ValidationFailed
from marketplace.lookups import require_job, require_job_view, require_public_profile, require_user
from marketplace.models import JobView, PublicUserProfile, ReviewRequest
from marketplace.ratings import compute_rating
from marketplace.repository import MarketplaceRepository
from marketplace.retry import retry_transient

LOGGER = logging.getLogger("marketplace.reviews")


class ReviewService:
    def __init__(self, repository: MarketplaceRepository) -> None:
        self.repository = repository

    @retry_transient()
    def submit_job_review(self, user_id: str, job_id: str, review: ReviewRequest) -> JobView:
        with self.repository.transaction():
            job = require_job(self.repository, job_id)
            application = self.repository.get_application(job["id"], user_id)
            if application is None or application["status"] != "accepted":
                raise InvalidStateError("Only users who have completed the job can leave reviews")
            try:
                self.repository.insert_job_review(
                    job["id"],
                    user_id,
                    rating=review.rating,
                    comment=review.comment,
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError("Already reviewed this job") from exc
            rating = compute_rating(self.repository.list_job_review_ratings(job["id"]))
            self.repository.set_job_rating(job["id"], rating)

        LOGGER.info(
            json.dumps(
                {
                    "event": "job_reviewed",
                    "job_id": job["id"],
                    "user_id": user_id,
                    "rating": rating,
                }
            )
        )
        return require_job_view(self.repository, job["id"])

    @retry_transient()
    def submit_user_review(
        self,
        reviewer_id: str,
        target_user_id: str,
        review: ReviewRequest,
    ) -> PublicUserProfile:
        with self.repository.transaction():
            target = require_user(self.repository, target_user_id)
            if target == reviewer_id:
                raise ValidationFailed("Users cannot review themselves")
            if not self.repository.have_worked_together(reviewer_id, target):
                raise InvalidStateError("Only users who have worked together can review each other")
            try:
                self.repository.insert_user_review(
                    target,
                    reviewer_id,
                    rating=review.rating,
                    comment=review.comment,
                )
            except sqlite3.IntegrityError as exc:
                raise ConflictError("Already reviewed this user") from exc
            rating = compute_rating(self.repository.list_user_review_ratings(target))
            self.repository.set_user_rating(target, rating)

        LOGGER.info(
            json.dumps(
                {
                    "event": "user_reviewed",
                    "user_id": target,
                    "reviewer_id": reviewer_id,
                    "rating": rating,
                }
            )
        )
        return require_public_profile(self.repository, target)
