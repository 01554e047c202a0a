"""
Gift Map - resolves an incoming gift (id or name) to a row id

File format: a JSON object of {"<gift id or name>": "<row id>"}.
Names also match case-insensitively.
"""

import json
from pathlib import Path
from typing import Dict, Optional

from strokeplotter.core.logger import log_info


class GiftMapError(Exception):
    """Raised when the gift map file cannot be loaded"""
    pass


class GiftMap:
    """Lookup table from gift id/name to row id"""

    def __init__(self, file_path: Path):
        self.file_path = Path(file_path)
        self._map: Dict[str, str] = {}

    def load(self) -> int:
        """
        (Re)load the map from disk. The previous map stays active on failure.

        Returns number of entries loaded.
        """
        try:
            data = json.loads(self.file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise GiftMapError(f"Cannot load gift map {self.file_path}: {e}") from e

        if not isinstance(data, dict):
            raise GiftMapError(f"Gift map {self.file_path} must be a JSON object")

        entries: Dict[str, str] = {}
        for key, row_id in data.items():
            if not isinstance(row_id, str):
                raise GiftMapError(f"Gift map entry {key!r} must map to a row id string")
            entries[key] = row_id
            entries.setdefault(key.lower(), row_id)

        self._map = entries
        log_info("Gift map loaded", {"entries": len(data)})
        return len(data)

    def resolve_row_id(self, gift_id: Optional[int] = None,
                       gift_name: Optional[str] = None) -> Optional[str]:
        """Id match wins, then exact name, then lowercased name."""
        if gift_id is not None:
            row_id = self._map.get(str(gift_id))
            if row_id:
                return row_id

        if gift_name:
            return self._map.get(gift_name) or self._map.get(gift_name.lower())

        return None

    def __len__(self) -> int:
        return len(self._map)


def resolve_gift_count(repeat_count: Optional[int] = None,
                       gift_count: Optional[int] = None,
                       repeat_end: Optional[bool] = None) -> int:
    """
    Number of strokes a gift event is worth.

    A finished combo counts its repeats. Otherwise an explicit gift count
    wins, then repeats from an event that never reports combo state.
    Anything else is a single gift.
    """
    if repeat_end and repeat_count:
        return repeat_count

    if gift_count:
        return gift_count

    if repeat_count and repeat_end is None:
        return repeat_count

    return 1
