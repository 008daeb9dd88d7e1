"""
Shared fixtures for the emoji field sync test suite.

Run:  pytest tests/ -v
"""

from typing import Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

import app as app_module
from config import Settings
from field_sync import FieldSynchronizer
from productboard import ProductboardAPIError

TRIGGER_FIELD_ID = 'cf-trigger-001'
TARGET_FIELD_ID = 'cf-target-002'
ENTITY_ID = 'feature-123'
WEBHOOK_SECRET = 'shh-its-a-secret'


class FakeProductboardClient:
    """Records every call and serves field labels from an in-memory table"""

    def __init__(self, fields: Optional[Dict[str, List[str]]] = None):
        self.fields = dict(fields or {})
        self.calls: List[Tuple] = []
        self.fail_on: Optional[str] = None

    def _maybe_fail(self, method: str):
        if self.fail_on == method:
            raise ProductboardAPIError(
                "Request failed with status code 502",
                method=method,
                url='https://api.productboard.com/hierarchy-entities/custom-fields-values/value',
                status_code=502,
                reason='Bad Gateway',
                body='upstream error',
            )

    def get_field_labels(self, field_id: str, entity_id: str) -> List[str]:
        self.calls.append(('GET', field_id, entity_id))
        self._maybe_fail('GET')
        return list(self.fields.get(field_id, []))

    def clear_field_value(self, field_id: str, entity_id: str) -> None:
        self.calls.append(('DELETE', field_id, entity_id))
        self._maybe_fail('DELETE')
        self.fields[field_id] = []

    def set_field_labels(self, field_id: str, entity_id: str, labels: List[str]) -> None:
        self.calls.append(('PUT', field_id, entity_id, list(labels)))
        self._maybe_fail('PUT')
        self.fields[field_id] = list(labels)

    def methods(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        webhook_secret=WEBHOOK_SECRET,
        pb_api_token='pb-token',
        cf_trigger_id=TRIGGER_FIELD_ID,
        cf_target_id=TARGET_FIELD_ID,
    )


@pytest.fixture
def fake_client() -> FakeProductboardClient:
    return FakeProductboardClient()


@pytest.fixture
def synchronizer(fake_client) -> FieldSynchronizer:
    return FieldSynchronizer(
        fake_client,
        trigger_field_id=TRIGGER_FIELD_ID,
        target_field_id=TARGET_FIELD_ID,
    )


@pytest.fixture
def client(settings, synchronizer, monkeypatch):
    """TestClient wired to the fake Productboard client"""
    monkeypatch.setattr(app_module, 'get_settings', lambda: settings)
    monkeypatch.setattr(app_module, 'build_synchronizer', lambda _settings: synchronizer)
    return TestClient(app_module.app)


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {'Authorization': f'Bearer {WEBHOOK_SECRET}'}


def make_event(
    field_id: str = TRIGGER_FIELD_ID,
    entity_id: Optional[str] = ENTITY_ID,
    event_type: str = 'hierarchy-entity.custom-field-value.updated',
) -> Dict:
    target = f'https://api.productboard.com/hierarchy-entities/custom-fields-values/value?customField.id={field_id}'
    if entity_id is not None:
        target += f'&hierarchyEntity.id={entity_id}'
    return {'data': {'eventType': event_type, 'links': {'target': target}}}
