"""
Persistent storage for the conversation ledger.

Conversations are written as one JSON document. Only the ordered
conversations and their messages are stored; typing indicators and
generation sessions never survive a restart.
"""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List

from chatstream.core.models import Conversation

logger = logging.getLogger(__name__)

STORE_VERSION = 1


class LedgerStore(ABC):
    @abstractmethod
    def load(self) -> List[Conversation]:
        pass

    @abstractmethod
    def save(self, conversations: List[Conversation]) -> None:
        pass


@dataclass
class JsonLedgerStore(LedgerStore):
    """
    JSON file store.

    A missing file loads as an empty ledger. A corrupt file is logged
    and also loads empty; the next save overwrites it.
    """

    path: Path

    def __post_init__(self) -> None:
        self.path = Path(self.path).expanduser()

    def load(self) -> List[Conversation]:
        if not self.path.exists():
            return []
        try:
            obj = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load conversations from {self.path}: {e}")
            return []

        raw_list = obj.get("conversations") if isinstance(obj, dict) else obj
        conversations: List[Conversation] = []
        for raw in raw_list or []:
            try:
                conversations.append(Conversation.from_dict(raw))
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable conversation entry: {e}")
        logger.info(f"Loaded {len(conversations)} conversations from {self.path}")
        return conversations

    def save(self, conversations: List[Conversation]) -> None:
        payload = {
            "version": STORE_VERSION,
            "conversations": [c.to_dict() for c in conversations],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self.path)
        logger.debug(f"Saved {len(conversations)} conversations to {self.path}")
