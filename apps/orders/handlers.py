import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from .errors import OrderWorkflowError

logger = logging.getLogger(__name__)


def api_exception_handler(exc, context):
    """Render workflow errors as ``{error, code}``; everything else goes to DRF."""
    if isinstance(exc, OrderWorkflowError):
        view = context.get("view")
        logger.info("%s rejected: %s (%s)", view.__class__.__name__ if view else "api", exc.message, exc.code)
        return Response({"error": exc.message, "code": exc.code}, status=exc.status_code)
    return exception_handler(exc, context)
