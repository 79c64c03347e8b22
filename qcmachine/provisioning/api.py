"""QingCloud IaaS API transport: parameter flattening, request signing, error mapping."""

import base64
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from urllib.parse import quote, quote_plus

import httpx

from qcmachine.provisioning.errors import APIError, NotFoundError, TransientAPIError

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.qingcloud.com"
API_PATH = "/iaas/"
API_VERSION = 1
SIGNATURE_METHOD = "HmacSHA256"
SIGNATURE_VERSION = 1
REQUEST_TIMEOUT = 60

RET_CODE_NOT_FOUND = 2100
# Internal error, server busy, resource busy, service under maintenance.
TRANSIENT_RET_CODES = frozenset({5000, 5100, 5200, 5300})


def flatten_params(params):
    """Flatten nested request params into QingCloud's dotted form.

    Lists become ``key.1``, ``key.2``...; dicts inside lists become
    ``key.1.field``. ``None`` values are dropped so an absent field is never
    sent as an empty or zero value.
    """
    flat = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            for index, item in enumerate(value, start=1):
                if isinstance(item, dict):
                    for sub_key, sub_value in item.items():
                        if sub_value is not None:
                            flat[f"{key}.{index}.{sub_key}"] = sub_value
                elif item is not None:
                    flat[f"{key}.{index}"] = item
        elif isinstance(value, bool):
            flat[key] = int(value)
        else:
            flat[key] = value
    return flat


def _encode(value):
    return quote(str(value), safe="-_.~")


def canonical_query(params):
    """Sorted, percent-encoded ``key=value`` pairs joined with ``&``."""
    return "&".join(f"{_encode(k)}={_encode(params[k])}" for k in sorted(params))


def sign(query, secret_access_key, method="GET", path=API_PATH):
    """Return the base64 HMAC-SHA256 signature of a canonical query string."""
    string_to_sign = f"{method}\n{path}\n{query}"
    digest = hmac.new(secret_access_key.encode(), string_to_sign.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode().strip()


def build_signed_query(action, params, access_key_id, secret_access_key, zone, time_stamp=None):
    """Build the full signed query string for one API action."""
    if time_stamp is None:
        time_stamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    request = flatten_params(params)
    request.update(
        {
            "action": action,
            "zone": zone,
            "access_key_id": access_key_id,
            "time_stamp": time_stamp,
            "version": API_VERSION,
            "signature_method": SIGNATURE_METHOD,
            "signature_version": SIGNATURE_VERSION,
        }
    )
    query = canonical_query(request)
    signature = sign(query, secret_access_key)
    return f"{query}&signature={quote_plus(signature)}"


def _check_response(action, body):
    """Map a decoded response body to its result or a typed error."""
    ret_code = body.get("ret_code", 0)
    if ret_code == 0:
        return body
    message = body.get("message", "unknown error")
    if ret_code == RET_CODE_NOT_FOUND:
        raise NotFoundError(action, message, code=ret_code)
    if ret_code in TRANSIENT_RET_CODES:
        raise TransientAPIError(action, message, code=ret_code)
    raise APIError(action, message, code=ret_code)


async def api_request(
    action,
    params,
    access_key_id,
    secret_access_key,
    zone,
    api_url=DEFAULT_API_URL,
    dry_run=False,
    transport=None,
):
    """Send one signed QingCloud API request.

    Returns:
        The decoded response dict, or ``None`` in dry-run mode.

    Raises:
        TransientAPIError: transport failure, HTTP 5xx, or a retryable ret_code.
        NotFoundError: the API reported the resource does not exist.
        APIError: any other rejection.
    """
    if dry_run:
        logger.info(f"[dry-run] {action} (zone={zone})")
        logger.info(f"[dry-run] params: {json.dumps(flatten_params(params), indent=2, sort_keys=True)}")
        return None

    query = build_signed_query(action, params, access_key_id, secret_access_key, zone)
    url = f"{api_url}{API_PATH}?{query}"
    logger.debug(f"QingCloud request: {action} (zone={zone})")

    try:
        async with httpx.AsyncClient(transport=transport) as client:
            resp = await client.get(url, timeout=REQUEST_TIMEOUT)
        resp.raise_for_status()
    except httpx.HTTPStatusError as e:
        status = e.response.status_code
        if status >= 500:
            raise TransientAPIError(action, f"HTTP {status}") from e
        raise APIError(action, f"HTTP {status}") from e
    except httpx.TransportError as e:
        raise TransientAPIError(action, str(e) or type(e).__name__) from e

    try:
        body = resp.json()
    except ValueError as e:
        raise TransientAPIError(action, "malformed response body") from e
    return _check_response(action, body)
