"""File-backed cache of the last server snapshot and the session user."""

import json
from pathlib import Path
from typing import Any, Optional, Union

from loguru import logger

from ..config import settings
from ..models import AppUser, DataSnapshot


class LocalCache:
    """Key-value store keeping one JSON file per slot."""

    RECORDS = "records"
    RELEASES = "releases"
    FACTORY_BALANCES = "factory_balances"
    MASTER_DATA = "master_data"
    APP_USER = "app_user"

    def __init__(self, cache_dir: Optional[Union[str, Path]] = None):
        self.cache_dir = Path(cache_dir) if cache_dir else settings.cache_path
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Local cache at {self.cache_dir}")

    def _path(self, slot: str) -> Path:
        return self.cache_dir / f"{slot}.json"

    def read(self, slot: str, default: Any = None) -> Any:
        """Return the decoded slot, or `default` when missing or corrupt."""
        path = self._path(slot)
        if not path.exists():
            return default
        try:
            with open(path, "r", encoding="utf-8") as f:
                value = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable cache slot '{slot}': {e}")
            return default
        return default if value is None else value

    def write(self, slot: str, value: Any) -> None:
        path = self._path(slot)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(value, f, ensure_ascii=False)
        tmp_path.replace(path)

    def remove(self, slot: str) -> None:
        self._path(slot).unlink(missing_ok=True)

    def save_snapshot(self, snapshot: DataSnapshot) -> None:
        """Overwrite the four data slots with a fresh server snapshot."""
        self.write(self.RECORDS, [r.to_payload() for r in snapshot.transports])
        self.write(self.RELEASES, [r.to_payload() for r in snapshot.releases])
        self.write(
            self.FACTORY_BALANCES,
            [b.to_payload() for b in snapshot.factory_balances]
        )
        self.write(self.MASTER_DATA, snapshot.master_data.to_payload())
        logger.debug(
            f"Cached snapshot: {len(snapshot.transports)} records, "
            f"{len(snapshot.releases)} releases"
        )

    def load_snapshot(self) -> DataSnapshot:
        """Rebuild the last cached snapshot; empty buckets when absent."""
        payload = {
            "transports": self.read(self.RECORDS, []),
            "releases": self.read(self.RELEASES, []),
            "factoryBalances": self.read(self.FACTORY_BALANCES, []),
            "masterData": self.read(self.MASTER_DATA, {}),
        }
        try:
            return DataSnapshot.from_payload(payload)
        except ValueError as e:
            logger.warning(f"Cached snapshot is invalid, starting empty: {e}")
            return DataSnapshot()

    def load_user(self) -> Optional[AppUser]:
        data = self.read(self.APP_USER)
        if not isinstance(data, dict):
            return None
        try:
            return AppUser.model_validate(data)
        except ValueError as e:
            logger.warning(f"Cached session user is invalid: {e}")
            return None

    def save_user(self, user: Optional[AppUser]) -> None:
        if user is None:
            self.remove(self.APP_USER)
        else:
            self.write(self.APP_USER, user.to_payload())
