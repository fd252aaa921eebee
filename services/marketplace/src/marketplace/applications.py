from __future__ import annotations

import json
import logging
import sqlite3

from marketplace.errors import ConflictError, ForbiddenError, InvalidStateError, NotFoundError
from marketplace.lookups import parse_identifier, require_job, require_job_view
from marketplace.models import JobView
from marketplace.repository import MarketplaceRepository
from marketplace.retry import retry_transient

LOGGER = logging.getLogger("marketplace.applications")

DECISION_STATES = ("accepted", "rejected")


class ApplicationService:
    """Per (job, user) state machine: none -> pending -> accepted | rejected."""

    def __init__(self, repository: MarketplaceRepository) -> None:
        self.repository = repository

    @retry_transient()
    def apply(self, user_id: str, job_id: str) -> JobView:
        with self.repository.transaction():
            job = require_job(self.repository, job_id)
            if job["status"] != "active":
                raise InvalidStateError("Job is not accepting applications")
            if self.repository.get_application(job["id"], user_id) is not None:
                raise ConflictError("Already applied for this job")
            try:
                self.repository.insert_application(job["id"], user_id)
            except sqlite3.IntegrityError as exc:
                raise ConflictError("Already applied for this job") from exc
            self.repository.add_job_applied(user_id, job["id"])

        LOGGER.info(json.dumps({"event": "job_applied", "job_id": job["id"], "user_id": user_id}))
        return require_job_view(self.repository, job["id"])

    @retry_transient()
    def decide(self, actor_id: str, job_id: str, applicant_id: str, status: str) -> JobView:
        if status not in DECISION_STATES:
            raise InvalidStateError(f"Applications can only be moved to {' or '.join(DECISION_STATES)}")
        with self.repository.transaction():
            job = require_job(self.repository, job_id)
            if job["owner_id"] != actor_id:
                raise ForbiddenError("Only the job owner can decide on applications")
            applicant = parse_identifier(applicant_id, "Application")
            application = self.repository.get_application(job["id"], applicant)
            if application is None:
                raise NotFoundError("Application not found")
            if application["status"] != "pending":
                raise InvalidStateError(f"Application is already {application['status']}")
            self.repository.set_application_status(job["id"], applicant, status)

        LOGGER.info(
            json.dumps(
                {
                    "event": "application_decided",
                    "job_id": job["id"],
                    "applicant_id": applicant,
                    "status": status,
                }
            )
        )
        return require_job_view(self.repository, job["id"])
