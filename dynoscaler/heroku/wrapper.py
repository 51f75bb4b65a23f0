import logging
from typing import List
from urllib.parse import quote

import requests
from retry import retry

from dynoscaler.exceptions import MutationError, SnapshotFetchError, StartupVerificationError
from dynoscaler.models import FleetSnapshot

RETRIES_NUMBER = 3
API_URL = 'https://api.heroku.com'


class HerokuWrapper:
    """
    Wrapper around the Heroku Platform API for reading and updating an app's formation
    """

    def __init__(self, api_key: str, app_name: str, timeout: float = 10, api_url: str = API_URL):
        self._app_name = app_name
        self._timeout = timeout
        self._api_url = api_url.rstrip('/')
        self._session = self._create_session(api_key)

    @staticmethod
    def _create_session(api_key: str) -> requests.Session:
        session = requests.Session()
        session.headers.update({
            'Accept': 'application/vnd.heroku+json; version=3',
            'Authorization': f'Bearer {api_key}',
            'User-Agent': 'dynoscaler'
        })
        return session

    @property
    def app_name(self) -> str:
        return self._app_name

    def _app_url(self, path: str) -> str:
        return f"{self._api_url}/apps/{quote(self._app_name, safe='')}/{path}"

    @retry(exceptions=requests.exceptions.ConnectionError, tries=RETRIES_NUMBER, delay=3)
    def _list_dynos(self):
        response = self._session.get(self._app_url('dynos'), timeout=self._timeout)
        response.raise_for_status()
        return response.json()

    def verify_access(self):
        """
        Make sure the API key works and the app exists.

        Raises:
            StartupVerificationError: If the dyno list cannot be read
        """
        try:
            dynos = self._list_dynos()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise StartupVerificationError(f"Failed to verify Heroku app {self._app_name} exists: {e}") from e

        logging.debug(f"Heroku app {self._app_name} is reachable, {len(dynos)} dynos running")

    def list_fleet_snapshots(self) -> List[FleetSnapshot]:
        """
        Get the current formation of the app.

        Returns:
            list: One FleetSnapshot per process type

        Raises:
            SnapshotFetchError: If the formation cannot be listed
        """
        try:
            response = self._session.get(self._app_url('formation'), timeout=self._timeout)
            response.raise_for_status()
            formations = response.json()
            return [
                FleetSnapshot(process_type=formation['type'], quantity=max(0, int(formation.get('quantity') or 0)))
                for formation in formations
            ]
        except (requests.exceptions.RequestException, ValueError, KeyError, TypeError) as e:
            raise SnapshotFetchError(f"Failed to list formations for Heroku app {self._app_name}: {e}") from e

    def set_fleet_quantity(self, process_type: str, quantity: int):
        """
        Scale a process type (the name used in the Procfile) to the given number of dynos.

        Raises:
            MutationError: If Heroku rejects the formation update
        """
        url = self._app_url(f"formation/{quote(process_type, safe='')}")
        try:
            response = self._session.patch(url, json={'quantity': quantity}, timeout=self._timeout)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise MutationError(f"Failed to update Heroku formation {process_type} to {quantity}: {e}") from e

        logging.info(f"Updated formation {process_type} of {self._app_name} to {quantity} dynos")
