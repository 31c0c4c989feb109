"""Image API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.dependencies import get_lifecycle
from app.exceptions import DockPulseError
from app.services.auth import require_auth
from app.services.lifecycle import LifecycleController
from app.utils.error_handling import raise_for_error
from app.utils.security import sanitize_log_message

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def list_images(
    admin: Optional[dict] = Depends(require_auth),
    lifecycle: LifecycleController = Depends(get_lifecycle),
):
    """List tagged images available for launching."""
    try:
        images = await lifecycle.list_images()
    except DockPulseError as e:
        raise_for_error(logger, e, "Failed to list images")
    return [image.to_dict() for image in images]


@router.get("/defaults")
async def image_defaults(
    admin: Optional[dict] = Depends(require_auth),
    image: str = Query(..., min_length=1, max_length=512, description="Image reference"),
    lifecycle: LifecycleController = Depends(get_lifecycle),
):
    """Declared environment variables and exposed ports of an image.

    Used to pre-populate the launch form. Output ordering is canonical.
    """
    try:
        defaults = await lifecycle.image_runtime_defaults(image)
    except DockPulseError as e:
        raise_for_error(
            logger, e, f"Failed to read defaults for image {sanitize_log_message(image)}"
        )
    return defaults.to_dict()
