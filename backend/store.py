# backend/store.py
import json
import logging
from typing import Any, Dict

from models import CaseProgress

logger = logging.getLogger("detective_store")


class ProgressStore:
    """Key-value persistence of a player's progress map. Last write wins."""

    def load(self, player_id: str) -> Dict[str, CaseProgress]:
        raise NotImplementedError

    def save(self, player_id: str, records: Dict[str, CaseProgress]) -> None:
        raise NotImplementedError

    def reset(self, player_id: str) -> None:
        self.save(player_id, {})


class InMemoryProgressStore(ProgressStore):
    """
    Keeps each player's map as a JSON string, the same shape a browser
    storage key or cache entry would hold, so every load hands out fresh
    objects.
    """

    def __init__(self):
        self._blobs: Dict[str, str] = {}

    def load(self, player_id: str) -> Dict[str, CaseProgress]:
        blob = self._blobs.get(player_id)
        if not blob:
            return {}
        raw: Dict[str, Any] = json.loads(blob)
        return {case_id: CaseProgress.model_validate(p) for case_id, p in raw.items()}

    def save(self, player_id: str, records: Dict[str, CaseProgress]) -> None:
        payload = {case_id: p.model_dump(mode="json") for case_id, p in records.items()}
        self._blobs[player_id] = json.dumps(payload)
        logger.debug("Progress saved: player_id=%s cases=%d", player_id, len(payload))

    def reset(self, player_id: str) -> None:
        self._blobs.pop(player_id, None)
