"""Durable mirror of highlight job state on the project record."""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from reelsmith.db.database import async_session_maker
from reelsmith.models.project import Project, ProcessingStatus

logger = logging.getLogger(__name__)


class ProjectNotFoundError(Exception):
    """Project does not exist for the caller."""
    pass


class ProjectMirror:
    """
    Writes job status to the ``projects`` table.

    Failures are logged and swallowed: the in-memory job is authoritative and
    a database hiccup must not fail the job.
    """

    def __init__(self, session_maker: Optional[async_sessionmaker] = None):
        self.session_maker = session_maker or async_session_maker

    async def _update(self, project_id: str, user_id: Optional[str] = None, **updates):
        try:
            async with self.session_maker() as session:
                project = await session.get(Project, project_id)
                if project is None:
                    project = Project(id=project_id, user_id=user_id)
                    session.add(project)
                elif project.user_id is None and user_id:
                    # Unclaimed rows are claimed by their first job; owned rows keep their owner
                    project.user_id = user_id
                for key, value in updates.items():
                    setattr(project, key, value)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to update project {project_id}: {e}")

    async def job_queued(self, job):
        await self._update(
            job.project_id,
            user_id=job.user_id,
            processing_type="highlights",
            processing_job_id=job.id,
            processing_status=ProcessingStatus.QUEUED,
            processing_progress=0,
            processing_message=job.message,
            processing_error=None,
            processing_result=None,
            processing_data={
                "content_type": job.content_type,
                "content_class": job.content_class.value,
                "output_mode": job.output_mode.value,
                "target_duration": job.target_duration,
                "source_locator": job.source_locator,
            },
            processing_started_at=datetime.utcnow(),
            processing_completed_at=None,
        )

    async def job_progress(self, job):
        await self._update(
            job.project_id,
            processing_status=ProcessingStatus.PROCESSING,
            processing_progress=job.progress,
            processing_message=job.message,
        )

    async def job_completed(self, job):
        result = job.result.to_dict() if job.result else {}
        result.update({
            "processing_time": (job.completed_at - job.created_at).total_seconds() if job.completed_at else None,
            "output_mode": job.output_mode.value,
            "content_type": job.content_type,
        })
        await self._update(
            job.project_id,
            processing_status=ProcessingStatus.COMPLETED,
            processing_progress=100,
            processing_message=job.message,
            processing_result=result,
            processing_completed_at=job.completed_at,
        )

    async def job_failed(self, job):
        await self._update(
            job.project_id,
            processing_status=ProcessingStatus.FAILED,
            processing_message=job.message,
            processing_error=job.error,
            processing_completed_at=job.completed_at,
        )

    async def get_owner(self, project_id: str) -> Optional[str]:
        """User owning the project row, or None when the row is absent or unclaimed."""
        async with self.session_maker() as session:
            project = await session.get(Project, project_id)
        return project.user_id if project else None

    async def get_result(self, project_id: str) -> Optional[dict]:
        """Terminal result stored for a project, for lookups after the in-memory job is purged."""
        try:
            async with self.session_maker() as session:
                project = await session.get(Project, project_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to load project {project_id}: {e}")
            return None
        if project is None:
            return None
        return {
            "job_id": project.processing_job_id,
            "user_id": project.user_id,
            "status": project.processing_status.value if project.processing_status else None,
            "progress": project.processing_progress,
            "message": project.processing_message,
            "error": project.processing_error,
            "result": project.processing_result,
        }
