"""Highlight job submission: validation, pricing and debit before queueing."""
import logging
from typing import Optional

from reelsmith.config import settings
from reelsmith.pipeline.profiles import ContentClass
from reelsmith.services.credit_service import CreditLedger, InsufficientCreditsError, HIGHLIGHTS_FEATURE
from reelsmith.services.project_service import ProjectMirror, ProjectNotFoundError
from reelsmith.services.storage_service import LocalObjectStore, SourceNotFoundError
from reelsmith.workers.job_store import HighlightRequest
from reelsmith.workers.orchestrator import HighlightOrchestrator

logger = logging.getLogger(__name__)


def validate_request(request: HighlightRequest):
    """Raise ValueError for a request the pipeline cannot serve."""
    if not request.project_id:
        raise ValueError("project_id is required")
    if not request.source_locator:
        raise ValueError("source_locator is required")
    if not settings.min_target_duration <= request.target_duration <= settings.max_target_duration:
        raise ValueError(
            f"target_duration must be between {settings.min_target_duration} "
            f"and {settings.max_target_duration} seconds"
        )
    if request.user_prompt and len(request.user_prompt) > settings.max_user_prompt_length:
        raise ValueError(
            f"user_prompt must be at most {settings.max_user_prompt_length} characters"
        )


class HighlightService:
    """Admits highlight requests into the orchestrator."""

    def __init__(
        self,
        orchestrator: HighlightOrchestrator,
        ledger: CreditLedger,
        storage: LocalObjectStore,
        mirror: Optional[ProjectMirror] = None,
    ):
        self.orchestrator = orchestrator
        self.ledger = ledger
        self.storage = storage
        self.mirror = mirror

    async def check_project_access(self, request: HighlightRequest):
        """Reject requests against a project owned by someone else."""
        if self.mirror is None:
            return
        owner = await self.mirror.get_owner(request.project_id)
        if owner and owner != request.user_id:
            logger.warning(f"User {request.user_id} denied access to project {request.project_id}")
            raise ProjectNotFoundError(f"Project not found: {request.project_id}")

    async def start_job(self, request: HighlightRequest) -> str:
        """
        Validate, price and debit a request, then queue it.

        Embedded requests are paid for by the editing session and skip the
        debit entirely.

        Args:
            request: Submission from the API or CLI

        Returns:
            The new job id

        Raises:
            ValueError: Malformed request
            ProjectNotFoundError: Project belongs to another user
            SourceNotFoundError: Source missing when pricing
            InsufficientCreditsError: Balance does not cover the cost
        """
        validate_request(request)
        await self.check_project_access(request)

        if not request.embedded:
            content_class = ContentClass.from_content_type(request.content_type)
            if not await self.storage.exists(request.source_locator):
                raise SourceNotFoundError(f"File not found in storage: {request.source_locator}")

            source_path = self.storage.path_for(self.storage.key_for(request.source_locator))
            cost = await self.ledger.estimate_cost(source_path, content_class)

            debited = await self.ledger.consume(
                request.user_id,
                cost,
                HIGHLIGHTS_FEATURE,
                {
                    "project_id": request.project_id,
                    "content_type": request.content_type,
                    "target_duration": request.target_duration,
                },
            )
            if not debited:
                balance = await self.ledger.get_balance(request.user_id)
                raise InsufficientCreditsError(cost, balance)

            logger.info(f"Charged {cost} credits to user {request.user_id} for project {request.project_id}")

        return await self.orchestrator.submit(request)
