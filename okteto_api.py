# Minimal client for the Okteto control-plane API.
#
# Only the namespace listing is needed to reclaim dev volumes: one GET request,
# authenticated with a personal or admin access token.

import requests

NAMESPACES_PATH = "/api/v0/namespaces"
DEFAULT_TIMEOUT = 30


class OktetoAPIError(Exception):
    pass


def get_namespaces(host, token, timeout=DEFAULT_TIMEOUT, session=None):
    """Return the ordered list of namespace names visible with the given token.

    Raises OktetoAPIError on network failure, a non 2xx answer or a body that
    is not a list of namespace objects.
    """
    http = session or requests
    request_url = f"https://{host}{NAMESPACES_PATH}"
    headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    try:
        r = http.get(request_url, headers=headers, timeout=timeout)
    except requests.RequestException as e:
        raise OktetoAPIError(f"request to {request_url} failed: {e}") from e

    if not r.ok:
        raise OktetoAPIError(f"{request_url} answered {r.status_code}: {r.text}")

    try:
        body = r.json()
    except ValueError as e:
        raise OktetoAPIError(f"invalid JSON answer from {request_url}: {e}") from e

    if not isinstance(body, list):
        raise OktetoAPIError(f"unexpected answer from {request_url}: expected a list of namespaces")

    names = list()
    for item in body:
        if not isinstance(item, dict) or not item.get("name"):
            raise OktetoAPIError(f"unexpected namespace entry: {item!r}")
        names.append(item["name"])
    return names
