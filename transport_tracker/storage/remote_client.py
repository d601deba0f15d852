"""HTTP client for the spreadsheet-backed Apps Script endpoint."""

import json
from typing import Any, Dict, List, NamedTuple, Optional

import requests
from loguru import logger
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import settings
from ..models import DataSnapshot, FactoryBalance, MasterData, Release, TransportRecord
from .local_cache import LocalCache


class FetchResult(NamedTuple):
    """Snapshot plus whether it came from the local cache."""

    snapshot: DataSnapshot
    degraded: bool


class RemoteClient:
    """Client for the single remote endpoint.

    Reads go through `fetch_all`, which retries and falls back to the local
    cache. Writes go through `mutate`, which posts once and never raises:
    a failed POST is logged and dropped.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        cache: Optional[LocalCache] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        multiplier: Optional[float] = None,
    ):
        self.base_url = base_url or settings.remote_api_url
        if not self.base_url:
            raise ValueError("REMOTE_API_URL must be set in environment variables")

        self.cache = cache or LocalCache()
        self.session = session or requests.Session()
        self.timeout = settings.request_timeout if timeout is None else timeout
        self.retries = settings.fetch_retries if retries is None else retries
        self.base_delay = settings.retry_base_delay if base_delay is None else base_delay
        self.multiplier = settings.retry_multiplier if multiplier is None else multiplier

        logger.info(
            f"Remote client initialized (timeout: {self.timeout}s, "
            f"retries: {self.retries})"
        )

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(
                multiplier=self.base_delay, exp_base=self.multiplier
            ),
            retry=retry_if_exception_type(requests.RequestException),
            before_sleep=lambda state: logger.warning(
                f"getAllData attempt {state.attempt_number} failed: "
                f"{state.outcome.exception()}"
            ),
            reraise=True,
        )

    def _get_all_data(self) -> Dict[str, Any]:
        response = self.session.get(
            self.base_url,
            params={"action": "getAllData"},
            headers={"Cache-Control": "no-store"},
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError(f"Unexpected getAllData payload: {type(payload).__name__}")
        return payload

    def fetch_all(self) -> FetchResult:
        """Pull the full dataset; serve the cached copy when the server is unreachable."""
        try:
            payload = self._retrying()(self._get_all_data)
            snapshot = DataSnapshot.from_payload(payload)
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to fetch data, using local cache: {e}")
            return FetchResult(self.cache.load_snapshot(), True)

        try:
            self.cache.save_snapshot(snapshot)
        except OSError as e:
            logger.warning(f"Could not write local cache: {e}")

        logger.info(
            f"Fetched {len(snapshot.transports)} records, "
            f"{len(snapshot.releases)} releases, "
            f"{len(snapshot.factory_balances)} factory balances"
        )
        return FetchResult(snapshot, False)

    def mutate(self, action: str, **payload: Any) -> bool:
        """Fire-and-forget POST. Returns False when the request could not be sent."""
        body = json.dumps({"action": action, **payload}, ensure_ascii=False)
        try:
            self.session.post(
                self.base_url,
                data=body.encode("utf-8"),
                headers={"Content-Type": "text/plain;charset=utf-8"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning(f"Failed to post {action} (not retried): {e}")
            return False

        logger.info(f"Posted {action}")
        return True

    def add_record(self, record: TransportRecord) -> bool:
        return self.mutate("addRecord", record=record.to_payload())

    def update_record(self, record: TransportRecord) -> bool:
        return self.mutate("updateRecord", record=record.to_payload())

    def delete_record(self, auto_id: str, goods_type: str) -> bool:
        return self.mutate("deleteRecord", autoId=auto_id, goodsType=goods_type)

    def save_master_data(self, data: MasterData) -> bool:
        return self.mutate("saveMasterData", data=data.to_payload())

    def add_releases_bulk(
        self, header: Dict[str, Any], distributions: List[Dict[str, Any]]
    ) -> bool:
        return self.mutate(
            "addReleasesBulk", header=header, distributions=distributions
        )

    def update_release(self, release: Release) -> bool:
        return self.mutate("updateRelease", release=release.to_payload())

    def delete_release(self, release_id: str, goods_type: str) -> bool:
        return self.mutate("deleteRelease", id=release_id, goodsType=goods_type)

    def update_factory_balance(self, balance: FactoryBalance) -> bool:
        return self.mutate("updateFactoryBalance", balance=balance.to_payload())
