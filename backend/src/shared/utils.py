"""
Common utility functions for Lambda handlers.
"""
import functools
import json
import time
import traceback
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional
from .errors import WorkError, ValidationError
from .logging import logger, log_event


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types from DynamoDB."""

    def default(self, o):
        if isinstance(o, Decimal):
            # Convert to int if it's a whole number, otherwise float
            if o % 1 == 0:
                return int(o)
            return float(o)
        return super().default(o)


def now_epoch() -> int:
    """Current time in whole epoch seconds, the unit every stored timestamp uses."""
    return int(time.time())


def format_response(
    status_code: int,
    body: Any,
    headers: Dict[str, str] = None
) -> Dict[str, Any]:
    """
    Format a standard API Gateway response with CORS headers.

    Args:
        status_code: HTTP status code
        body: Response body (will be JSON serialized)
        headers: Additional headers to include

    Returns:
        API Gateway response dict
    """
    default_headers = {
        'Access-Control-Allow-Origin': '*',
        'Access-Control-Allow-Credentials': True,
        'Content-Type': 'application/json',
        'Cache-Control': 'no-store'
    }

    if headers:
        default_headers.update(headers)

    return {
        'statusCode': status_code,
        'headers': default_headers,
        'body': json.dumps(body, cls=DecimalEncoder)
    }


def parse_body(event: dict) -> dict:
    """
    Safely parse JSON body from API Gateway event.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        Parsed body dict or empty dict if invalid
    """
    try:
        body = event.get('body') or '{}'
        if isinstance(body, str):
            parsed = json.loads(body)
        else:
            parsed = body
        return parsed if isinstance(parsed, dict) else {}
    except (json.JSONDecodeError, TypeError):
        return {}


def get_path_param(event: dict, param_name: str) -> Optional[str]:
    """Extract path parameter from event."""
    try:
        return event['pathParameters'][param_name]
    except (KeyError, TypeError):
        return None


def get_query_param(event: dict, param_name: str, default: str = None) -> Optional[str]:
    """Extract query string parameter from event."""
    params = event.get('queryStringParameters') or {}
    return params.get(param_name, default)


def get_int_param(event: dict, param_name: str, default: int, minimum: int = 1, maximum: int = 100) -> int:
    """Query string integer clamped to [minimum, maximum]; junk falls back to the default."""
    try:
        value = int(get_query_param(event, param_name, default))
    except (TypeError, ValueError):
        value = default
    return min(max(value, minimum), maximum)


def require_fields(body: dict, *names: str) -> List[Any]:
    """Return the named body fields, raising ValidationError if any is missing or blank."""
    missing = [name for name in names if body.get(name) in (None, '')]
    if missing:
        raise ValidationError(f"Missing {', '.join(missing)}", missing=missing)
    return [body[name] for name in names]


def api_handler(func: Callable) -> Callable:
    """
    Wrap an API Gateway handler: log the event, turn WorkError into its typed
    response and anything unexpected into a 500.
    """
    @functools.wraps(func)
    def wrapper(event, context):
        log_event(event)
        try:
            status_code, body = func(event, context)
            return format_response(status_code, body)
        except WorkError as e:
            logger.info(f"{func.__module__}: {e.code}: {e.message}")
            return format_response(e.status_code, e.to_dict())
        except Exception as e:
            logger.error(f"{func.__module__} error: {e}")
            traceback.print_exc()
            return format_response(500, {'error': 'InternalError', 'message': 'Internal Server Error'})

    return wrapper
