from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from cohort_reports.config import AppConfig, Settings, get_config, get_settings
from cohort_reports.core.database import get_db
from cohort_reports.models.host import HostUser
from cohort_reports.services.scope import Viewer

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]


async def get_current_viewer_optional(
    request: Request,
    db: DBSession,
    settings: AppSettings,
) -> Viewer | None:
    """Resolve the viewer from the host platform's identity header, None if absent."""
    raw = request.headers.get(settings.viewer_header)
    if not raw:
        return None

    try:
        user_id = int(raw.strip())
    except ValueError:
        return None

    user = await db.get(HostUser, user_id)
    if not user:
        return None

    return Viewer(
        id=user.id,
        fullname=user.fullname,
        email=user.email,
        is_admin=user.id in settings.site_admin_ids,
    )


async def get_current_viewer(
    viewer: Viewer | None = Depends(get_current_viewer_optional),
) -> Viewer:
    """Get the current viewer, raise 401 if not identified."""
    if not viewer:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return viewer


CurrentViewer = Annotated[Viewer, Depends(get_current_viewer)]
