"""Google Cloud Storage dead-letter sink — one object per failure."""

from __future__ import annotations

import threading

import structlog

from cypher_deadletter.config.models import DeadLetterConfig
from cypher_deadletter.deadletter.record import WriteFailureRecord
from cypher_deadletter.errors import PersistError
from cypher_deadletter.sinks.base import PersistResult, parse_location, storage_retry

logger = structlog.get_logger()


class GCSDeadLetterSink:
    """Creates a uniquely named ``.json`` object per failed write.

    Objects are created with ``if_generation_match=0`` so an upload either
    creates the whole object or nothing; a precondition failure on a retry
    means an earlier attempt already landed.
    """

    def __init__(self, config: DeadLetterConfig, sink_id: str = "dead-letter") -> None:
        self._config = config
        self._sink_id = sink_id
        self._destination = parse_location(config.location)
        self._client = None
        self._client_lock = threading.Lock()

    @property
    def sink_id(self) -> str:
        return self._sink_id

    @property
    def location(self) -> str:
        return self._config.location

    def _get_client(self):  # noqa: ANN202
        with self._client_lock:
            if self._client is None:
                try:
                    from google.cloud import storage
                except ImportError:
                    msg = (
                        "google-cloud-storage is required for gs:// dead-letter "
                        "locations. Install it with: pip install cypher-deadletter[gcs]"
                    )
                    raise ImportError(msg) from None

                self._client = storage.Client()
            return self._client

    def persist(self, record: WriteFailureRecord) -> PersistResult:
        key = self._destination.object_key()
        url = self._destination.url_for(key)
        try:
            payload = record.to_json()
        except (TypeError, ValueError) as exc:
            msg = f"Could not serialize dead-letter record: {exc}"
            raise PersistError(msg, location=url) from exc

        @storage_retry(self._config.retry)
        def _upload(client) -> None:  # noqa: ANN001
            bucket = client.bucket(self._destination.bucket)
            blob = bucket.blob(key)
            try:
                blob.upload_from_string(
                    payload,
                    content_type="application/json",
                    if_generation_match=0,
                )
            except Exception as exc:
                # google.api_core PreconditionFailed: the object already exists
                if getattr(exc, "code", None) != 412:
                    raise
                logger.debug("gcs_sink.already_written", sink_id=self.sink_id, url=url)

        try:
            _upload(self._get_client())
        except Exception as exc:
            msg = f"Could not upload dead-letter object {url}: {exc}"
            raise PersistError(msg, location=url) from exc

        logger.debug("gcs_sink.persisted", sink_id=self.sink_id, url=url)
        return PersistResult(
            sink_id=self.sink_id, location=url, size_bytes=len(payload.encode("utf-8"))
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
