# storefront/api.py
import json
import logging
from functools import wraps

from django.http import HttpResponse, JsonResponse

from .exceptions import StoreError

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Something went wrong. Please try again."


def json_view(view):
    """
    Parse the JSON body into ``request.json`` and turn the view's return value
    (a dict) or a raised StoreError into a JsonResponse.

    Unexpected exceptions are logged with their traceback and reported to the
    caller as a generic retry prompt.
    """
    @wraps(view)
    def wrapper(request, *args, **kwargs):
        request.json = {}
        if request.method in ("POST", "PUT", "PATCH") and request.body:
            try:
                request.json = json.loads(request.body)
            except (ValueError, UnicodeDecodeError):
                return JsonResponse(
                    {"success": False, "error": "Invalid JSON body", "code": "invalid_json"},
                    status=400,
                )
            if not isinstance(request.json, dict):
                return JsonResponse(
                    {"success": False, "error": "JSON object expected", "code": "invalid_json"},
                    status=400,
                )

        try:
            result = view(request, *args, **kwargs)
        except StoreError as e:
            log = logger.error if e.status >= 500 else logger.info
            log(f"{view.__name__} rejected: {e.code} - {e.message}")
            return JsonResponse(e.as_dict(), status=e.status)
        except Exception:
            logger.error(f"Unhandled error in {view.__name__}", exc_info=True)
            return JsonResponse(
                {"success": False, "error": GENERIC_ERROR, "code": "server_error"},
                status=500,
            )

        if isinstance(result, HttpResponse):
            return result
        return JsonResponse(result)

    return wrapper


def get_client_ip(request):
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.META.get("HTTP_X_REAL_IP") or request.META.get("REMOTE_ADDR") or "unknown"
