import json
import logging
import threading
from typing import Iterator, Optional

import httpx
import pycouchdb

from portfolio.settings import Settings, settings

logger = logging.getLogger(__name__)


class CouchClient:
    """
    Connection to the CouchDB database backing the blog collection.
    Constructed explicitly and opened at startup to avoid import-time connections.
    """

    def __init__(
        self,
        settings_obj: Settings = settings,
        *,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.settings = settings_obj
        self.collection = settings_obj.BLOGS_COLLECTION
        self._transport = transport
        self._server = None
        self._database = None
        self._http: Optional[httpx.Client] = None

    def open(self) -> "CouchClient":
        self._server = pycouchdb.Server(self.settings.couchdb_url)
        try:
            self._database = self._server.database(self.collection)
        except pycouchdb.exceptions.NotFound:
            logger.info(f"Creating missing CouchDB database '{self.collection}'")
            self._database = self._server.create(self.collection)
        self._http = self._build_http_client()
        logger.info(f"Opened CouchDB collection '{self.collection}'")
        return self

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None
        self._database = None
        self._server = None
        logger.info(f"Closed CouchDB collection '{self.collection}'")

    def __enter__(self):
        return self.open()

    def __exit__(self, *exc_info):
        self.close()

    @property
    def database(self):
        if self._database is None:
            raise RuntimeError("CouchClient is not open")
        return self._database

    def current_seq(self) -> str:
        return str(self.database.config().get("update_seq", "now"))

    def ping(self) -> bool:
        try:
            self.database.config()
            return True
        except Exception as e:
            logger.error(f"CouchDB connection test failed: {e}")
            return False

    def changes(
        self, since: str = "now", stop_event: Optional[threading.Event] = None
    ) -> Iterator[dict]:
        """
        Stream rows of the continuous _changes feed.
        Transport errors propagate to the caller.
        """
        if self._http is None:
            raise RuntimeError("CouchClient is not open")

        params = {
            "feed": "continuous",
            "since": since,
            "heartbeat": self.settings.CHANGES_HEARTBEAT_MS,
        }
        with self._http.stream(
            "GET", f"/{self.collection}/_changes", params=params
        ) as response:
            response.raise_for_status()
            logger.info(f"Connected to _changes of '{self.collection}' since ({since})")

            for line in response.iter_lines():
                if stop_event is not None and stop_event.is_set():
                    return

                # skip heartbeat or empty lines
                line = line.strip()
                if not line:
                    continue

                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping invalid JSON line: {line}")

    def _build_http_client(self) -> httpx.Client:
        return httpx.Client(
            base_url=f"http://{self.settings.COUCHDB_HOST}:{self.settings.COUCHDB_PORT}",
            auth=(self.settings.COUCHDB_USERNAME, self.settings.COUCHDB_PASSWORD),
            timeout=httpx.Timeout(connect=5.0, read=None, write=None, pool=5.0),
            # continuous feeds hold their connection open for their whole life
            limits=httpx.Limits(max_connections=None, max_keepalive_connections=10),
            transport=self._transport,
        )
