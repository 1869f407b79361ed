"""
HTTP health probe for the n8n main container.
"""

import time
from typing import Callable, Optional

import httpx

DEFAULT_HEALTH_URL = 'http://127.0.0.1:5678/healthz'


def check_health(url: str, client: Optional[httpx.Client] = None,
                 timeout_s: float = 3.0) -> tuple[bool, str]:
    """Call the health endpoint once.

    Returns:
        Tuple of (is_healthy, message). Healthy means HTTP 200.
    """
    try:
        if client is not None:
            resp = client.get(url, timeout=timeout_s)
        else:
            with httpx.Client(timeout=timeout_s, follow_redirects=False) as own_client:
                resp = own_client.get(url)
    except (httpx.ConnectError, httpx.TimeoutException):
        return False, 'No response'
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        return False, f"Error: {type(e).__name__}: {e}"

    if resp.status_code != 200:
        return False, f"HTTP {resp.status_code}"
    return True, 'Healthy'


def wait_until_healthy(
    url: str,
    attempts: int = 12,
    interval_s: float = 5,
    sleep: Callable[[float], None] = time.sleep,
    client: Optional[httpx.Client] = None,
) -> bool:
    """Poll the endpoint until it answers 200 or the attempts run out.

    Sleeps between attempts, not after the last one. Never raises on timeout.
    """
    for attempt in range(1, attempts + 1):
        ok, _ = check_health(url, client=client)
        if ok:
            return True
        if attempt < attempts:
            sleep(interval_s)
    return False
