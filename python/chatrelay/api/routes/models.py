"""Model catalog route.

- GET /models: the provider's model catalog, passed through

Requires authentication.
Response envelope: {"data": [...]}
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from chatrelay.api.deps import get_openrouter_client
from chatrelay.auth.middleware import Viewer, get_current_user
from chatrelay.errors import ApiError, ApiErrorCode
from chatrelay.logging import get_logger
from chatrelay.responses import success_response
from chatrelay.services.llm import LLMError, OpenRouterClient

logger = get_logger(__name__)

router = APIRouter(tags=["models"])


@router.get("/models")
async def list_models(
    viewer: Annotated[Viewer, Depends(get_current_user)],
    client: Annotated[OpenRouterClient, Depends(get_openrouter_client)],
) -> dict:
    """List models offered by the provider.

    Errors:
        PROXY_ERROR (500): The catalog could not be fetched.
    """
    try:
        models = await client.list_models()
    except LLMError as e:
        logger.warning(
            "models_proxy_failed",
            error_class=e.error_class.value,
            status_code=e.status_code,
        )
        raise ApiError(ApiErrorCode.PROXY_ERROR, "Failed to fetch the model list") from e
    return success_response(models)
