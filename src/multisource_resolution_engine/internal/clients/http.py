from __future__ import annotations

import logging
from typing import Any

import requests

from multisource_resolution_engine.model.resolution import RegistryError


def get_json_or_none(
    session: requests.Session,
    url: str,
    *,
    timeout_s: float,
    user_agent: str,
    accept: str = "application/json",
) -> Any | None:
    """
    GET a JSON document. Returns None on 404; any other failure is a RegistryError.
    """
    headers = {"Accept": accept, "User-Agent": user_agent}
    logging.debug(f"GET {url}")
    try:
        resp = session.get(url, headers=headers, timeout=timeout_s)
    except requests.RequestException as e:
        raise RegistryError(f"request failed: {url}: {e}") from e

    if resp.status_code == 404:
        return None

    try:
        resp.raise_for_status()
        return resp.json()
    except requests.HTTPError as e:
        raise RegistryError(f"registry returned {resp.status_code} for {url}") from e
    except ValueError as e:
        raise RegistryError(f"registry returned invalid JSON for {url}") from e
