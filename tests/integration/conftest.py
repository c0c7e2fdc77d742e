"""Fixtures for tests against a live Neo4j instance."""

from __future__ import annotations

import os

import pytest

from cypher_deadletter.config.models import Neo4jConfig


@pytest.fixture
def neo4j_config() -> Neo4jConfig:
    uri = os.environ.get("NEO4J_URI")
    if not uri:
        pytest.skip("NEO4J_URI not set")
    return Neo4jConfig(
        uri=uri,
        username=os.environ.get("NEO4J_USERNAME", "neo4j"),
        password=os.environ.get("NEO4J_PASSWORD", "letmein!"),
    )
