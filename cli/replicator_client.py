"""HTTP client for communicating with the replicator service."""

import time
import uuid
from typing import Optional

import httpx

from common.logging_config import get_logger
from cli.config import Config
from cli.constants import GREEN, POLICY_ID_PREFIX, RED, RESET

logger = get_logger(__name__)


def policy_params(policy: str) -> dict:
    """Query parameters naming a policy: 'id:<id>' selects by id, anything else by name."""
    if policy.startswith(POLICY_ID_PREFIX):
        return {'policyId': policy[len(POLICY_ID_PREFIX):]}
    return {'policyName': policy}


class ReplicatorClient:
    """HTTP client for the replicator API with retry logic and error handling."""

    def __init__(self, config: Config):
        """
        Initialize replicator client.

        Args:
            config: Configuration instance
        """
        self.config = config
        self.session = httpx.Client(
            base_url=config.get_base_url(),
            timeout=config.get_timeout()
        )
        self.request_id = None
        logger.info(f"Initialized ReplicatorClient [base_url={config.get_base_url()}]")

    def _request_with_retry(self, method: str, endpoint: str, **kwargs) -> httpx.Response:
        """
        Send a request, retrying server errors and network failures with exponential backoff.

        Client errors (4xx) are returned immediately; the last 5xx response
        is returned once retries are exhausted.

        Raises:
            ConnectionError: The service could not be reached or kept timing out
        """
        retry_config = self.config.get_retry_config()
        attempts = retry_config['max_retries'] + 1

        self.request_id = str(uuid.uuid4())
        kwargs.setdefault('headers', {})['X-Request-ID'] = self.request_id
        tag = f"{method} {endpoint} [request_id={self.request_id}]"

        failure = None
        for attempt in range(1, attempts + 1):
            try:
                response = self.session.request(method, endpoint, **kwargs)
            except (httpx.ConnectError, httpx.TimeoutException) as e:
                failure = e
                logger.warning(f"Network error on attempt {attempt}/{attempts}: {type(e).__name__} {tag}")
            else:
                logger.debug(f"Response {response.status_code} on attempt {attempt}/{attempts}: {tag}")
                if response.status_code < 500 or attempt == attempts:
                    return response
                logger.warning(f"Server error {response.status_code} on attempt {attempt}/{attempts}: {tag}")

            if attempt < attempts:
                time.sleep(retry_config['retry_backoff_multiplier'] ** (attempt - 1))

        logger.error(f"Giving up after {attempts} attempts: {failure} {tag}")
        if isinstance(failure, httpx.TimeoutException):
            raise ConnectionError("Request timed out. Replicator may be overloaded.")
        raise ConnectionError("Cannot connect to replicator service. Is it running?")

    def _format_error(self, response: httpx.Response) -> str:
        """
        Map HTTP errors to user-friendly messages.

        Args:
            response: HTTP response object

        Returns:
            User-friendly error message
        """
        try:
            error_data = response.json()
            detail = error_data.get('detail', 'Unknown error')
            code = error_data.get('code', 'UNKNOWN')
        except ValueError:
            detail = response.text if response.text else 'Unknown error'
            code = 'UNKNOWN'

        error_messages = {
            'UNTRUSTED_NODE': 'Node is not a trusted device.',
            'POLICY_NOT_FOUND': 'Policy not found.',
            'VERSION_INCOMPATIBLE': 'Source and target run incompatible versions.',
            'CONFLICT': 'A replication of this policy is already in progress.',
            'NODE_UNAVAILABLE': 'Node is unreachable or the policy module is not provisioned.',
        }

        if code in error_messages:
            return f"{error_messages[code]} {detail}"

        status_messages = {
            400: 'Bad request',
            404: 'Not found',
            409: 'Conflict',
            500: 'Server error',
            502: 'Remote node error',
            503: 'Service unavailable',
            504: 'Remote job timed out',
        }

        message = status_messages.get(response.status_code, 'Request failed')
        message = f"{message}: {detail}"
        return f"{message} (Code: {code})" if code != 'UNKNOWN' else message

    def _format_records(self, records: list) -> str:
        if not records:
            return "No policies found."

        lines = [f"Found {len(records)} polic{'y' if len(records) == 1 else 'ies'}:"]
        for record in records:
            lines.append(self._format_record(record))
        return "\n".join(lines)

    def _format_record(self, record: dict) -> str:
        state = record.get('state', 'UNKNOWN')
        color = GREEN if state == 'AVAILABLE' else RED if state == 'ERROR' else ''
        line = (
            f"  {color}{state:<12}{RESET if color else ''} {record.get('name')} "
            f"(ID: {record.get('id')}, Version: {record.get('versionTimestamp') or '-'})"
        )
        if record.get('error'):
            line += f"\n      error: {record['error']}"
        return line

    def status(self, target: str, name: Optional[str] = None) -> str:
        """
        Show policies tracked for or present on a target.

        Args:
            target: Target node
            name: Optional policy name prefix

        Returns:
            Formatted status listing or error message
        """
        params = {'target': target}
        if name:
            params['name'] = name

        try:
            response = self._request_with_retry('GET', '/policies', params=params)
            if response.status_code != 200:
                return f"Status failed: {self._format_error(response)}"

            data = response.json()
            if isinstance(data, dict):
                return self._format_records([data])
            return self._format_records(data)

        except ConnectionError as e:
            logger.error(f"Connection error during status: {e}")
            return f"Error: {e}"

    def _submit(self, params: dict) -> str:
        try:
            response = self._request_with_retry('POST', '/policies', params=params)
            if response.status_code != 202:
                return f"Replication failed: {self._format_error(response)}"

            accepted = response.json().get('accepted', [])
            lines = [f"Replication accepted for {len(accepted)} target(s):"]
            for record in accepted:
                lines.append(f"  {record['target']}: {record['name']} (ID: {record['id']}) {record['state']}")
            return "\n".join(lines)

        except ConnectionError as e:
            logger.error(f"Connection error during submission: {e}")
            return f"Error: {e}"

    def replicate(
        self,
        source: str,
        targets: list[str],
        policy: str,
        new_name: Optional[str] = None
    ) -> str:
        """
        Replicate a policy from a source node to targets.

        Args:
            source: Source node
            targets: Target nodes
            policy: Policy name, or 'id:<id>'
            new_name: Optional name for the policy on the targets

        Returns:
            Accepted requests or error message
        """
        logger.info(f"Replicating {policy} from {source} to {targets}")
        params = {'source': source, 'targets': ','.join(targets), **policy_params(policy)}
        if new_name:
            params['targetPolicyName'] = new_name
        return self._submit(params)

    def import_url(self, url: str, targets: list[str], name: str) -> str:
        """
        Import a policy file served at a URL onto targets.

        Returns:
            Accepted requests or error message
        """
        logger.info(f"Importing {url} as {name} to {targets}")
        return self._submit({'sourceUrl': url, 'targets': ','.join(targets), 'targetPolicyName': name})

    def delete(self, target: str, policy: str) -> str:
        """
        Delete a policy from a target, or clear its failed replication.

        Args:
            target: Target node
            policy: Policy name, or 'id:<id>'

        Returns:
            Outcome message or error message
        """
        try:
            response = self._request_with_retry(
                'DELETE', '/policies', params={'target': target, **policy_params(policy)}
            )
            if response.status_code != 200:
                return f"Delete failed: {self._format_error(response)}"
            return response.json().get('msg', 'Deleted.')

        except ConnectionError as e:
            logger.error(f"Connection error during delete: {e}")
            return f"Error: {e}"

    def close(self) -> None:
        self.session.close()
