from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger("planfix_mcp.planfix_client")


class PlanfixError(Exception):
    """Base exception for Planfix request failures."""
    pass


class PlanfixApiError(PlanfixError):
    """Planfix answered, but with an error status or a ``result: fail`` body."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def contact_url(account: str, contact_id: int) -> str:
    return f"https://{account}.planfix.com/contact/{contact_id}"


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"Planfix API error {response.status_code}"


class PlanfixClient:
    """
    Minimal Planfix REST client.

    Every call is a JSON request against ``<base_url><path>`` with the bearer
    token. 429, 5xx and transport errors are retried ``retries`` times with
    exponential backoff; 4xx and ``{"result": "fail"}`` bodies raise at once.
    """

    backoff_base = 0.3

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        token: str,
        retries: int = 1,
    ) -> None:
        self.http_client = http_client
        self.base_url = base_url.rstrip("/") + "/"
        self.token = token
        self.retries = retries

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def request(
        self,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        method: str = "POST",
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path.lstrip('/')}"
        last_exc: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            try:
                response = await self.http_client.request(
                    method=method.upper(),
                    url=url,
                    json=body,
                    headers=self._headers(),
                )
            except httpx.HTTPError as exc:
                last_exc = PlanfixError(str(exc) or type(exc).__name__)
            else:
                status = response.status_code
                if status != 429 and status < 500:
                    return self._parse(response)
                last_exc = PlanfixApiError(_error_message(response), status_code=status)

            if attempt >= self.retries:
                break
            backoff = self.backoff_base * (2**attempt)
            logger.debug(f"Retrying {method.upper()} {path} in {backoff:.1f}s: {last_exc}")
            await asyncio.sleep(backoff)

        if isinstance(last_exc, PlanfixError):
            raise last_exc
        message = str(last_exc) if last_exc else "Unknown Planfix error"
        raise PlanfixError(message)

    @staticmethod
    def _parse(response: httpx.Response) -> Dict[str, Any]:
        if response.status_code >= 400:
            raise PlanfixApiError(_error_message(response), status_code=response.status_code)
        try:
            data = response.json()
        except ValueError:
            raise PlanfixError("Planfix returned a non-JSON response") from None
        if isinstance(data, dict):
            if data.get("result") == "fail":
                raise PlanfixApiError(
                    str(data.get("error") or "Planfix request failed"),
                    status_code=response.status_code,
                )
            return data
        return {"result": data}
