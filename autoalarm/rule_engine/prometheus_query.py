import logging
from typing import Any, Dict, Set
from urllib.parse import urlencode

import requests
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest

from ..exceptions import RuleBackendError

logger = logging.getLogger(__name__)

# PromQL per resource type: (query, label carrying the identifier)
REPORTING_QUERIES: Dict[str, Dict[str, str]] = {
    "EC2": {"query": 'up{job="ec2"}', "label": "instance"},
}


class ReportingQueryError(RuleBackendError):
    """Raised when the workspace query API cannot answer."""

    pass


class PrometheusReportingQuery:
    """Asks a managed Prometheus workspace which resources are reporting."""

    def __init__(self, session: Any, region: str, timeout: float = 10.0) -> None:
        self.session = session
        self.region = region
        self.timeout = timeout

    def is_reporting(self, resource_type: str, workspace_id: str) -> Set[str]:
        """Return the identifiers of resources currently reporting metrics."""
        definition = REPORTING_QUERIES.get(resource_type.upper())
        if not definition:
            logger.warning(
                f"No reporting query for {resource_type}; no resources count as reporting"
            )
            return set()

        data = self.query(workspace_id, definition["query"])
        identifiers = set()
        for item in data.get("result", []):
            value = item.get("metric", {}).get(definition["label"])
            if value:
                # strip the exporter port
                identifiers.add(value.split(":")[0])
        logger.info(
            f"{len(identifiers)} {resource_type} resources reporting to workspace {workspace_id}"
        )
        return identifiers

    def query(self, workspace_id: str, expr: str) -> Dict[str, Any]:
        url = (
            f"https://aps-workspaces.{self.region}.amazonaws.com/workspaces/"
            f"{workspace_id}/api/v1/query?{urlencode({'query': expr})}"
        )
        headers = self._sign("GET", url)
        try:
            response = requests.get(url, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Prometheus query failed for workspace {workspace_id}: {e}")
            raise ReportingQueryError(f"Prometheus query failed: {expr}") from e

        if payload.get("status") != "success":
            logger.warning(
                f"Prometheus query failed (status: {payload.get('status')}): {expr}"
            )
            raise ReportingQueryError(f"Prometheus query returned {payload.get('status')}")
        return payload.get("data", {})

    def _sign(self, method: str, url: str) -> Dict[str, str]:
        credentials = self._credentials()
        request = AWSRequest(method=method, url=url)
        SigV4Auth(credentials, "aps", self.region).add_auth(request)
        return dict(request.headers.items())

    def _credentials(self) -> Any:
        credentials = self.session.get_credentials()
        if credentials is None:
            raise ReportingQueryError("No AWS credentials available to sign the query")
        return credentials.get_frozen_credentials()
