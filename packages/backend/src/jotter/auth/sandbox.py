"""Sandbox mode detection.

Sandbox mode lets the demo frontend use the API without an account: the
request is served as a fixed sandbox principal. It activates only when

    (not production OR JOTTER_ENABLE_SANDBOX)
    AND (X-Sandbox-Mode header == "true" OR ?sandbox=true)

Values are matched exactly — "True", "1" or "false" do not activate it.
"""

from starlette.requests import Request

from jotter.config import Settings

SANDBOX_HEADER = "X-Sandbox-Mode"
SANDBOX_QUERY_PARAM = "sandbox"


def sandbox_requested(request: Request) -> bool:
    """Does the request signal sandbox intent?"""
    return (
        request.headers.get(SANDBOX_HEADER) == "true"
        or request.query_params.get(SANDBOX_QUERY_PARAM) == "true"
    )


def sandbox_active(request: Request, settings: Settings) -> bool:
    return settings.sandbox_available and sandbox_requested(request)
