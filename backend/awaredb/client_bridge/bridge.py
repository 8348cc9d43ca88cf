from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

# Receives the record-score body; returns True when the server accepted it.
SendCallable = Callable[[Dict[str, Any]], bool]


class ScoreBridge:
    """
    Final-score submission shared by the direct call and the SCORM shims.

    A send is attempted only when the score differs from the last score
    successfully sent during this page load. `on_unload` makes one last
    attempt when nothing has been sent yet.
    """

    def __init__(
        self,
        send: SendCallable,
        *,
        tracking_link_id: str,
        content_id: Optional[str] = None,
        beacon: Optional[SendCallable] = None,
    ) -> None:
        self._send = send
        self._beacon = beacon or send
        self.tracking_link_id = tracking_link_id
        self.content_id = content_id
        self.interactions: List[Dict[str, Any]] = []
        self.last_sent_score: Optional[float] = None
        self.send_attempts = 0
        self._unload_attempted = False

    def record_interaction(
        self,
        tag_name: str,
        interaction_type: str,
        value: Optional[str] = None,
    ) -> None:
        self.interactions.append(
            {
                "tag": tag_name,
                "type": interaction_type,
                "value": value,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    def _payload(self, score: float) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "tracking_link_id": self.tracking_link_id,
            "score": score,
            "interactions": list(self.interactions),
        }
        if self.content_id:
            payload["content_id"] = self.content_id
        return payload

    def _attempt(self, score: float, transport: SendCallable) -> bool:
        if self.last_sent_score is not None and score == self.last_sent_score:
            logger.debug("Score already sent; skipping", extra={"score": score})
            return False
        self.send_attempts += 1
        try:
            accepted = bool(transport(self._payload(score)))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Score send failed", extra={"score": score, "error": str(exc)})
            return False
        if accepted:
            self.last_sent_score = score
        return accepted

    def record_score(self, score: Any) -> bool:
        """Direct call entry point (`window.RecordTest` in the browser)."""
        value = parse_score(score)
        if value is None:
            return False
        self._attempt(value, self._send)
        return True

    def submit(self, score: float) -> bool:
        return self._attempt(score, self._send)

    def on_unload(self, current_score: Optional[float]) -> bool:
        if self._unload_attempted or self.last_sent_score is not None or current_score is None:
            return False
        self._unload_attempted = True
        return self._attempt(current_score, self._beacon)


def parse_score(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if score != score or score in {float("inf"), float("-inf")}:
        return None
    return score
