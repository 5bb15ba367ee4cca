"""Async Cassandra database connection using cassandra-asyncio-driver.

The cassandra-asyncio-driver extends the standard cassandra-driver with a
``session.aexecute()`` coroutine, so repositories can await their queries.
"""

import structlog
from cassandra.auth import PlainTextAuthProvider
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra_asyncio.cluster import Cluster

from src.comments.models import COMMENTS_TABLES_CQL
from src.config.settings import get_settings
from src.notifications.models import NOTIFICATIONS_TABLES_CQL
from src.stories.models import STORIES_TABLES_CQL
from src.users.models import USERS_TABLES_CQL


logger = structlog.get_logger(__name__)

# Schema groups created at startup, in dependency order
SCHEMA: dict[str, list[str]] = {
    "users": USERS_TABLES_CQL,
    "stories": STORIES_TABLES_CQL,
    "comments": COMMENTS_TABLES_CQL,
    "notifications": NOTIFICATIONS_TABLES_CQL,
}


class AsyncCassandraConnection:
    """Async Cassandra connection manager.

    Manages the cluster connection and session lifecycle. Connecting is
    synchronous; queries run through ``aexecute()``.
    """

    _cluster: Cluster | None = None
    _session = None

    @classmethod
    def connect(cls):
        """Establish connection to the Cassandra cluster.

        Raises:
            ConnectionError: If connection fails
        """
        if cls._session is not None:
            return cls._session

        settings = get_settings()

        auth_provider = None
        if settings.cassandra_username and settings.cassandra_password:
            auth_provider = PlainTextAuthProvider(
                username=settings.cassandra_username,
                password=settings.cassandra_password,
            )

        cls._cluster = Cluster(
            contact_points=settings.cassandra_hosts,
            port=settings.cassandra_port,
            auth_provider=auth_provider,
            protocol_version=settings.cassandra_protocol_version,
            load_balancing_policy=TokenAwarePolicy(DCAwareRoundRobinPolicy()),
            connect_timeout=settings.cassandra_connect_timeout,
        )

        try:
            cls._session = cls._cluster.connect()
            logger.info(
                "async_cassandra_connected",
                hosts=settings.cassandra_hosts,
                port=settings.cassandra_port,
            )
        except Exception as e:
            logger.error("async_cassandra_connection_failed", error=str(e))
            raise ConnectionError(f"Failed to connect to Cassandra: {e}") from e

        return cls._session

    @classmethod
    def disconnect(cls) -> None:
        """Close the connection to Cassandra."""
        if cls._session is not None:
            cls._session.shutdown()
            cls._session = None
            logger.info("async_cassandra_session_closed")

        if cls._cluster is not None:
            cls._cluster.shutdown()
            cls._cluster = None
            logger.info("async_cassandra_cluster_closed")


async def init_async_keyspace(session, keyspace: str) -> None:
    """Create the keyspace if it does not exist."""
    settings = get_settings()

    if settings.is_production:
        replication = "'class': 'NetworkTopologyStrategy', 'datacenter1': 3"
    else:
        replication = "'class': 'SimpleStrategy', 'replication_factor': 1"

    await session.aexecute(f"""
        CREATE KEYSPACE IF NOT EXISTS {keyspace}
        WITH replication = {{{replication}}}
        AND durable_writes = true
    """)
    logger.info("async_keyspace_created", keyspace=keyspace)


async def init_async_tables(
    session, keyspace: str, group: str, statements: list[str]
) -> None:
    """Create one module's tables and indexes."""
    for cql_template in statements:
        await session.aexecute(cql_template.format(keyspace=keyspace))
    logger.info("async_tables_created", group=group, keyspace=keyspace)


async def init_async_cassandra():
    """Connect and create the keyspace and every table.

    Returns:
        Cassandra session with aexecute() support
    """
    settings = get_settings()
    session = AsyncCassandraConnection.connect()

    await init_async_keyspace(session, settings.cassandra_keyspace)
    session.set_keyspace(settings.cassandra_keyspace)

    for group, statements in SCHEMA.items():
        await init_async_tables(session, settings.cassandra_keyspace, group, statements)

    logger.info("async_cassandra_initialized", keyspace=settings.cassandra_keyspace)
    return session


async def shutdown_async_cassandra() -> None:
    """Shutdown the async Cassandra connection."""
    AsyncCassandraConnection.disconnect()
