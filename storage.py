import copy
import json
import logging
import os
import tempfile
from typing import Callable, Dict, List, Optional

import requests

from errors import PersistenceError


class MemoryStorage:
    """Keeps the collection in process memory. Nothing survives a restart."""

    def __init__(self, records: Optional[List[Dict]] = None):
        self._records = copy.deepcopy(records or [])

    def load_all(self) -> List[Dict]:
        return copy.deepcopy(self._records)

    def save_all(self, records: List[Dict]) -> None:
        self._records = copy.deepcopy(list(records))


class JsonFileStorage:
    """
    File-backed collection, one JSON array per file.

    A missing file is an empty collection. A file that cannot be read or
    parsed is a PersistenceError, never an empty collection.
    """

    def __init__(self, filepath: str):
        self.logger = logging.getLogger(__name__)
        self.filepath = filepath

    def load_all(self) -> List[Dict]:
        if not os.path.exists(self.filepath):
            return []
        try:
            with open(self.filepath, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            self.logger.error(f"Error reading {self.filepath}: {str(e)}")
            raise PersistenceError(f"Could not read {os.path.basename(self.filepath)}: {e}")

        if not isinstance(data, list):
            raise PersistenceError(f"{os.path.basename(self.filepath)} does not hold a list")
        return data

    def save_all(self, records: List[Dict]) -> None:
        directory = os.path.dirname(os.path.abspath(self.filepath))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(list(records), f, indent=2)
            os.replace(tmp_path, self.filepath)
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(f"Error writing {self.filepath}: {str(e)}")
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise PersistenceError(f"Could not save {os.path.basename(self.filepath)}: {e}")


class RemoteApiStorage:
    """
    Persists the roster through another roster server's REST API.

    Load is ``GET {base_url}/students``, save is a bulk
    ``PUT {base_url}/students``.
    """

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 timeout: float = 10):
        self.logger = logging.getLogger(__name__)
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    def load_all(self) -> List[Dict]:
        url = f"{self.base_url}/students"
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise PersistenceError(f"Failed to load students from {url}: {e}")

        if not isinstance(data, list):
            raise PersistenceError(f"Unexpected response from {url}")
        return data

    def save_all(self, records: List[Dict]) -> None:
        url = f"{self.base_url}/students"
        try:
            response = self.session.put(url, json=list(records), timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise PersistenceError(f"Failed to save students to {url}: {e}")


class FallbackStorage:
    """
    Remote storage that drops to a local adapter on the first failure.

    The mode starts at ``MODE_REMOTE`` and moves to ``MODE_LOCAL_FALLBACK``
    once, on the first remote failure; it never moves back. Callbacks
    registered with ``on_fallback`` receive the error that caused the switch.
    The two stores are not reconciled.
    """

    MODE_REMOTE = 'remote'
    MODE_LOCAL_FALLBACK = 'local_fallback'

    def __init__(self, remote, local):
        self.logger = logging.getLogger(__name__)
        self.remote = remote
        self.local = local
        self.mode = self.MODE_REMOTE
        self._listeners: List[Callable[[PersistenceError], None]] = []

    def on_fallback(self, callback: Callable[[PersistenceError], None]) -> None:
        self._listeners.append(callback)

    def _fall_back(self, error: PersistenceError) -> None:
        self.mode = self.MODE_LOCAL_FALLBACK
        self.logger.warning(f"Remote storage failed, falling back to local storage: {error.message}")
        for callback in self._listeners:
            callback(error)

    def load_all(self) -> List[Dict]:
        if self.mode == self.MODE_REMOTE:
            try:
                return self.remote.load_all()
            except PersistenceError as e:
                self._fall_back(e)
        return self.local.load_all()

    def save_all(self, records: List[Dict]) -> None:
        if self.mode == self.MODE_REMOTE:
            try:
                self.remote.save_all(records)
                return
            except PersistenceError as e:
                self._fall_back(e)
        self.local.save_all(records)


def build_storage(mode: str, data_file: str, api_base_url: Optional[str] = None):
    """Create the adapter for a configured storage mode."""
    if mode == 'memory':
        return MemoryStorage()
    if mode == 'local':
        return JsonFileStorage(data_file)
    if mode == 'api':
        if not api_base_url:
            raise ValueError("API_BASE_URL is required when STORAGE_MODE is 'api'")
        return FallbackStorage(RemoteApiStorage(api_base_url), JsonFileStorage(data_file))
    raise ValueError(f"Unknown storage mode: {mode}")
