"""Shared fixtures: a fake HTTP session and a sample spreadsheet payload."""

import json
from copy import deepcopy

import pytest
import requests

from transport_tracker.storage import LocalCache, RemoteClient
from transport_tracker.tracking import DashboardStore

BASE_URL = "https://script.example.test/exec"

SOY = "صويا"
MAIZE = "ذرة صفراء"
DONE = "تمت"
IN_PROGRESS = "جاري التنفيذ"
STOPPED = "متوقفة"

SAMPLE_PAYLOAD = {
    "transports": [
        {
            "autoId": "SOY-1001-0001",
            "date": "2025-01-06",
            "departureTime": "08:30",
            "carNumber": "A B C 123",
            "driverName": "علي حسن",
            "goodsType": SOY,
            "weight": 40,
            "status": DONE,
            "orderNo": "1",
            "unloadingSite": "SiteA",
        },
        {
            "autoId": "SOY-1002-0002",
            "date": "2025-01-07",
            "departureTime": "09:15",
            "carNumber": "D E 456",
            "driverName": "عمر سعيد",
            "goodsType": SOY,
            "weight": "20",
            "status": IN_PROGRESS,
            "orderNo": "1",
            "unloadingSite": "SiteA ",
        },
        {
            "autoId": "TR-1003-0003",
            "date": "2025-01-12",
            "carNumber": "F 789",
            "driverName": "علي حسن",
            "goodsType": MAIZE,
            "weight": 30,
            "status": STOPPED,
            "orderNo": "2",
            "unloadingSite": "SiteB",
        },
        {
            "autoId": "SOY-1004-0004",
            "date": "2025-01-08",
            "goodsType": SOY,
            "weight": 10,
            "status": DONE,
            "orderNo": "9",
            "unloadingSite": "SiteC",
        },
    ],
    "releases": [
        {
            "id": "R1",
            "releaseNo": "100",
            "orderNo": "1",
            "date": "2025-01-05T00:00:00.000Z",
            "siteName": "SiteA",
            "goodsType": SOY,
            "totalQuantity": 100,
        },
        {
            "id": "R2",
            "releaseNo": "200",
            "orderNo": 2,
            "date": "2025-01-10",
            "siteName": "SiteB",
            "goodsType": MAIZE,
            "totalQuantity": "50",
        },
    ],
    "factoryBalances": [
        {
            "id": "F1",
            "siteName": "SiteA",
            "goodsType": SOY,
            "openingBalance": 5,
            "manualConsumption": 2,
        },
    ],
    "masterData": {
        "drivers": ["علي حسن", "خالد"],
        "cars": ["A B C 123"],
        "loadingSites": ["ميناء دمياط"],
        "unloadingSites": ["SiteA", "SiteB"],
        "goodsTypes": [SOY, MAIZE],
        "contractors": ["النيل للنقل"],
        "users": [
            {"name": "المدير", "pin": "1111", "role": "admin", "allowedMaterials": "الكل"},
            {"name": "محرر الصويا", "pin": 2222, "role": "editor", "allowedMaterials": "صويا"},
            {"name": "مشاهد الذرة", "pin": "3333", "role": "viewer", "allowedMaterials": "ذرة"},
        ],
    },
}


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return deepcopy(self.payload)


class FakeSession:
    """Stands in for requests.Session.

    `responses` is consumed one per GET; the last entry repeats. Entries that
    are exceptions are raised instead of returned.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [FakeResponse(SAMPLE_PAYLOAD)])
        self.gets = []
        self.posts = []
        self.post_error = None

    def get(self, url, params=None, headers=None, timeout=None):
        self.gets.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def post(self, url, data=None, headers=None, timeout=None):
        if self.post_error is not None:
            raise self.post_error
        self.posts.append({"body": json.loads(data.decode("utf-8")), "headers": headers})
        return FakeResponse({"status": "success"})

    def actions(self):
        return [p["body"]["action"] for p in self.posts]


@pytest.fixture
def payload():
    return deepcopy(SAMPLE_PAYLOAD)


@pytest.fixture
def cache(tmp_path):
    return LocalCache(tmp_path / "cache")


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def remote(cache, session):
    return RemoteClient(
        base_url=BASE_URL,
        cache=cache,
        session=session,
        timeout=1.0,
        retries=2,
        base_delay=0,
        multiplier=1.5,
    )


@pytest.fixture
def store(remote):
    store = DashboardStore(remote)
    store.refresh()
    yield store
    store.close()
