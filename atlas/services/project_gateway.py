"""
Project creation port used by submission → project conversion.

The default creator inserts a ``Project`` row inside the caller's
transaction (flush only, no commit) so conversion stays atomic: if the
submission update loses its compare-and-swap, the project row is rolled
back with it.
"""

import logging

from atlas.core.exceptions import ValidationError
from atlas.models import db
from atlas.models.intake import Project

logger = logging.getLogger(__name__)


def create_project(project_data: dict, actor_oid: str | None = None) -> int:
    """Create a project from *project_data* and return its id."""
    if not isinstance(project_data, dict):
        raise ValidationError("project must be an object")
    title = project_data.get("title")
    title = title.strip() if isinstance(title, str) else ""
    if not title:
        raise ValidationError("project.title is required")

    description = project_data.get("description")
    project = Project(
        title=title,
        description=description.strip() if isinstance(description, str) else None,
        status=project_data.get("status") or "active",
        owner_oid=project_data.get("ownerOid") or project_data.get("owner_oid") or actor_oid,
        source_submission_id=project_data.get("source_submission_id"),
        created_by_oid=actor_oid,
    )
    db.session.add(project)
    db.session.flush()
    logger.debug("Project row created id=%s title=%s", project.id, project.title)
    return project.id
