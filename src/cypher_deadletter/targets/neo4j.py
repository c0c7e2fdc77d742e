"""Neo4j query runner: one write transaction per batch."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import structlog

from cypher_deadletter.config.models import Neo4jConfig

logger = structlog.get_logger()


async def _run_in_tx(tx: Any, query: str, parameters: dict[str, Any]) -> None:
    result = await tx.run(query, parameters)
    # Consuming surfaces server-side errors raised while streaming results.
    await result.consume()


class Neo4jQueryRunner:
    """Thin adapter over the official async ``neo4j`` driver."""

    def __init__(self, config: Neo4jConfig) -> None:
        self._config = config
        self._driver: Any = None

    async def start(self) -> None:
        try:
            import neo4j
        except ImportError:
            msg = (
                "The neo4j driver is required to run pipelines. "
                "Install it with: pip install cypher-deadletter[neo4j]"
            )
            raise ImportError(msg) from None

        self._driver = neo4j.AsyncGraphDatabase.driver(
            self._config.uri,
            auth=(self._config.username, self._config.password.get_secret_value()),
            connection_timeout=self._config.connection_timeout_seconds,
        )
        await self._driver.verify_connectivity()
        logger.info(
            "neo4j_runner.started",
            uri=self._config.uri,
            database=self._config.database,
        )

    async def run(self, query: str, parameters: Mapping[str, Any]) -> None:
        if self._driver is None:
            msg = "Neo4jQueryRunner.start() must be called before run()"
            raise RuntimeError(msg)
        async with self._driver.session(database=self._config.database) as session:
            await session.execute_write(_run_in_tx, query, dict(parameters))

    async def stop(self) -> None:
        if self._driver is not None:
            await self._driver.close()
            self._driver = None
            logger.info("neo4j_runner.stopped", uri=self._config.uri)
