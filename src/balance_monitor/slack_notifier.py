from __future__ import annotations

from typing import Any

import httpx

from .errors import DeliveryError


class SlackNotifier:
    def __init__(
        self,
        webhook_url: str,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = webhook_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, payload: dict[str, Any]) -> None:
        # Single attempt: a failed alert is reported and picked up again next sweep.
        try:
            response = await self._client.post(self._url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            body = exc.response.text.strip()[:200]
            raise DeliveryError(
                f"Slack webhook returned HTTP {exc.response.status_code}: {body}"
            ) from exc
        except httpx.InvalidURL as exc:
            raise DeliveryError("Slack webhook URL is malformed") from exc
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Slack webhook request failed: {exc!r}") from exc
