"""Amazon S3 dead-letter sink — one object per failure."""

from __future__ import annotations

import threading

import structlog

from cypher_deadletter.config.models import DeadLetterConfig
from cypher_deadletter.deadletter.record import WriteFailureRecord
from cypher_deadletter.errors import PersistError
from cypher_deadletter.sinks.base import PersistResult, parse_location, storage_retry

logger = structlog.get_logger()


class S3DeadLetterSink:
    """Puts a uniquely named ``.json`` object per failed write.

    ``PutObject`` is atomic per object; ``IfNoneMatch="*"`` refuses to
    overwrite, so a ``PreconditionFailed`` on a retry means an earlier
    attempt already landed.
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
                import boto3

                self._client = boto3.client("s3")
            return self._client

    def persist(self, record: WriteFailureRecord) -> PersistResult:
        key = self._destination.object_key()
        url = self._destination.url_for(key)
        try:
            body = record.to_json().encode("utf-8")
        except (TypeError, ValueError) as exc:
            msg = f"Could not serialize dead-letter record: {exc}"
            raise PersistError(msg, location=url) from exc

        @storage_retry(self._config.retry)
        def _put(client) -> None:  # noqa: ANN001
            try:
                client.put_object(
                    Bucket=self._destination.bucket,
                    Key=key,
                    Body=body,
                    ContentType="application/json",
                    IfNoneMatch="*",
                )
            except Exception as exc:
                response = getattr(exc, "response", None) or {}
                if response.get("Error", {}).get("Code") != "PreconditionFailed":
                    raise
                logger.debug("s3_sink.already_written", sink_id=self.sink_id, url=url)

        try:
            _put(self._get_client())
        except Exception as exc:
            msg = f"Could not put dead-letter object {url}: {exc}"
            raise PersistError(msg, location=url) from exc

        logger.debug("s3_sink.persisted", sink_id=self.sink_id, url=url)
        return PersistResult(sink_id=self.sink_id, location=url, size_bytes=len(body))

    def close(self) -> None:
        self._client = None
