import logging
from typing import List, Optional
from urllib.parse import quote

import requests

from dynoscaler.exceptions import SnapshotFetchError, StartupVerificationError
from dynoscaler.models import QueueSnapshot

QUEUE_COLUMNS = 'name,vhost,messages_ready,messages_unacknowledged'


class RabbitMQManagementSource:
    """
    Reads queue depths from the RabbitMQ management HTTP API.

    Every queue visible to the user is listed in a single request, or only the
    queues of one virtual host when ``vhost`` is given.
    """

    def __init__(self, host: str, username: str, password: str, vhost: Optional[str] = None,
                 use_ssl: bool = True, port: Optional[int] = None, timeout: float = 10):
        scheme = 'https' if use_ssl else 'http'
        netloc = f"{host}:{port}" if port else host
        self._base_url = f"{scheme}://{netloc}/api"
        self._vhost = vhost
        self._timeout = timeout
        self._session = requests.Session()
        self._session.auth = (username, password)
        self._session.headers.update({'Accept': 'application/json'})

    @property
    def queues_url(self) -> str:
        if self._vhost:
            return f"{self._base_url}/queues/{quote(self._vhost, safe='')}"
        return f"{self._base_url}/queues"

    def verify_access(self):
        try:
            response = self._session.get(f"{self._base_url}/whoami", timeout=self._timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise StartupVerificationError(f"Failed to authenticate against RabbitMQ management API: {e}") from e

    def list_queue_snapshots(self) -> List[QueueSnapshot]:
        """
        Get ready and unacknowledged message counts for every queue.

        Returns:
            list: One QueueSnapshot per queue

        Raises:
            SnapshotFetchError: If the queues cannot be listed
        """
        try:
            response = self._session.get(self.queues_url, params={'columns': QUEUE_COLUMNS},
                                         timeout=self._timeout)
            response.raise_for_status()
            queues = response.json()
            snapshots = [
                QueueSnapshot(
                    name=queue['name'],
                    # Counters are missing until the broker has collected stats for a new queue
                    ready=max(0, int(queue.get('messages_ready') or 0)),
                    unacked=max(0, int(queue.get('messages_unacknowledged') or 0))
                )
                for queue in queues
            ]
        except (requests.exceptions.RequestException, ValueError, KeyError, TypeError) as e:
            raise SnapshotFetchError(f"Failed to list RabbitMQ queues: {e}") from e

        logging.debug(f"Listed {len(snapshots)} RabbitMQ queues")
        return snapshots
