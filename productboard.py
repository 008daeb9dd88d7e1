"""
Minimal Productboard REST client for hierarchy-entity custom field values.

Only multi-select ("multi-dropdown") fields are supported: values are read as
a list of labels, cleared with DELETE and written back in full with PUT.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, ValidationError
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from config import RetryPolicy

logger = logging.getLogger(__name__)

FIELD_VALUE_PATH = '/hierarchy-entities/custom-fields-values/value'
MULTI_DROPDOWN_TYPE = 'multi-dropdown'


class FieldLabel(BaseModel):
    label: str


class FieldValueData(BaseModel):
    type: Optional[str] = None
    value: Optional[List[FieldLabel]] = None


class CustomFieldValue(BaseModel):
    """Response envelope of the custom field value resource"""
    data: FieldValueData

    def labels(self) -> List[str]:
        if self.data.value is None:
            return []
        return [item.label for item in self.data.value]


class ProductboardError(Exception):
    """Base class for failures talking to the Productboard API"""


class ProductboardAPIError(ProductboardError):
    """A request failed at the transport level or returned a non-2xx status"""

    def __init__(
        self,
        message: str,
        method: str,
        url: str,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.method = method
        self.url = url
        self.status_code = status_code
        self.reason = reason
        self.body = body

    def details(self) -> Dict[str, Any]:
        return {
            'method': self.method,
            'url': self.url,
            'status': self.status_code,
            'statusText': self.reason,
            'data': self.body,
            'message': str(self),
        }


class ProductboardSchemaError(ProductboardError):
    """The API answered with a payload that does not look like a field value"""


def build_session(retry_policy: RetryPolicy) -> requests.Session:
    """Create a session that retries transient server errors with exponential backoff"""
    retry = Retry(
        total=retry_policy.total,
        backoff_factor=retry_policy.backoff_factor,
        status_forcelist=retry_policy.status_forcelist(),
        allowed_methods=frozenset({'GET', 'PUT', 'DELETE'}),
        raise_on_status=False,
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry)
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session


class ProductboardClient:
    def __init__(
        self,
        api_token: str,
        base_url: str = 'https://api.productboard.com',
        api_version: str = '1',
        retry_policy: Optional[RetryPolicy] = None,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.api_token = api_token
        self.base_url = base_url.rstrip('/')
        self.api_version = api_version
        self.timeout = timeout
        self.session = session or build_session(retry_policy or RetryPolicy())

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Bearer {self.api_token}',
            'X-Version': self.api_version,
            'Accept': 'application/json',
        }

    def _request(
        self,
        method: str,
        field_id: str,
        entity_id: str,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        url = f"{self.base_url}{FIELD_VALUE_PATH}"
        params = {'customField.id': field_id, 'hierarchyEntity.id': entity_id}
        try:
            response = self.session.request(
                method,
                url,
                headers=self._headers(),
                params=params,
                json=json_body,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ProductboardAPIError(str(e), method=method, url=url) from e

        if not response.ok:
            raise ProductboardAPIError(
                f"Request failed with status code {response.status_code}",
                method=method,
                url=response.url,
                status_code=response.status_code,
                reason=response.reason,
                body=response.text,
            )
        return response

    def get_field_value(self, field_id: str, entity_id: str) -> CustomFieldValue:
        response = self._request('GET', field_id, entity_id)
        try:
            return CustomFieldValue.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise ProductboardSchemaError(
                f"Unexpected custom field value payload for field {field_id}: {e}"
            ) from e

    def get_field_labels(self, field_id: str, entity_id: str) -> List[str]:
        """Return the labels currently selected on a multi-select field"""
        return self.get_field_value(field_id, entity_id).labels()

    def clear_field_value(self, field_id: str, entity_id: str) -> None:
        self._request('DELETE', field_id, entity_id)
        logger.info(f"Cleared custom field {field_id} on entity {entity_id}")

    def set_field_labels(self, field_id: str, entity_id: str, labels: List[str]) -> None:
        """Replace the value of a multi-select field with the given labels"""
        payload = {
            'data': {
                'type': MULTI_DROPDOWN_TYPE,
                'value': [{'label': label} for label in labels],
            }
        }
        self._request('PUT', field_id, entity_id, json_body=payload)
        logger.info(f"Set custom field {field_id} on entity {entity_id} to {labels}")
