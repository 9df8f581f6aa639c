from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any


class TrackingDeliveryError(RuntimeError):
    pass


class TrackingRateLimited(TrackingDeliveryError):
    pass


@dataclass(frozen=True)
class TrackingClient:
    """
    Posts tracking batches and session summaries to the ingestion API.

    No retries here: the queue owns backoff and requeues failed batches.
    """

    base_url: str
    timeout_seconds: int = 10
    batch_path: str = "/api/recommendations/track-batch"
    session_path: str = "/api/analytics/sessions"

    def post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + path
        body = json.dumps(payload, default=str).encode("utf-8")
        try:
            req = urllib.request.Request(url, data=body, method="POST")
        except ValueError as e:
            raise TrackingDeliveryError(f"Invalid tracking API URL {url!r}: {e}") from e
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json")
        try:
            with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read()
        except urllib.error.HTTPError as e:
            if e.code == 429:
                raise TrackingRateLimited("Rate limited (429)") from e
            try:
                detail = e.read().decode("utf-8", errors="ignore")
            except OSError:
                detail = ""
            raise TrackingDeliveryError(f"HTTP {e.code} from tracking API: {detail[:300]}") from e
        except (urllib.error.URLError, OSError) as e:
            raise TrackingDeliveryError(f"Tracking API unreachable ({path}): {e}") from e

        if not raw:
            return {}
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise TrackingDeliveryError(f"Invalid JSON from tracking API ({path})") from e
        return data if isinstance(data, dict) else {}

    def send_events(self, events: list[dict[str, Any]]) -> dict[str, Any]:
        return self.post_json(self.batch_path, {"events": events})

    def send_session(self, session: dict[str, Any]) -> dict[str, Any]:
        return self.post_json(self.session_path, session)
