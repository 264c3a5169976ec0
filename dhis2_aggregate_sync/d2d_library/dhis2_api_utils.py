"""Utility functions for DHIS2 API requests."""

from typing import Any

import requests
from openhexa.toolbox.dhis2 import DHIS2
from requests.exceptions import HTTPError, RequestException


def api_endpoint(dhis2_client: DHIS2, endpoint: str) -> str:
    """Build the full API url of an endpoint for the given DHIS2 client."""
    return f"{str(dhis2_client.api.url).rstrip('/')}/{endpoint.lstrip('/')}"


def dhis2_request(session: requests.Session, method: str, url: str, **kwargs: Any) -> dict | list:
    """Wrapper around requests to handle DHIS2 GET/POST with error handling.

    Parameters
    ----------
    session : requests.Session
        Session object used to perform requests.
    method : str
        HTTP method: 'get' or 'post'.
    url : str
        Full URL for the request.
    **kwargs
        Additional arguments for session.request (json, params, timeout, etc.)

    Returns
    -------
    dict | list
        Either the response JSON or an error payload with 'error' and 'status_code'.
    """
    r = None
    try:
        r = session.request(method, url, **kwargs)
        r.raise_for_status()
        return r.json()
    except HTTPError as e:
        try:
            return {
                "error": f"HTTP error during {method.upper()} {e} status_code: {r.status_code} response: {r.json()}",
                "status_code": r.status_code,
            }
        except Exception:
            return {"error": f"HTTP error during {method.upper()} {e} status_code: {r.status_code}"}
    except RequestException as e:
        return {"error": f"Request error during {method.upper()} {url}: {e}"}
    except ValueError as e:
        return {"error": f"Invalid JSON response during {method.upper()} {url}: {e}"}


def is_error_payload(payload: Any) -> bool:
    """Check if a payload returned by `dhis2_request` is an error payload."""
    return isinstance(payload, dict) and "error" in payload
