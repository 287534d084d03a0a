from dataclasses import dataclass

from libb import ConfigOptions

__all__ = ['DatabaseSettings']


@dataclass
class DatabaseSettings(ConfigOptions):
    """Settings

    supported provider names: `sqlite`, `postgresql` (`postgres`),
    `mssql` (`sqlserver`)

    The connection string is passed to the provider unchanged: a SQLAlchemy
    URL or the provider's native connection string format.

    Connection pooling options:
    - use_pool: Whether to use connection pooling (default: False)
    - pool_max_connections: Maximum connections in pool (default: 5)
    - pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
    - pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)

    Execution options:
    - command_timeout_seconds: Per-command timeout, 0 for none (default: 30)
    - fetch_size: Rows fetched per round trip by queries (default: 500)
    - reflection_mapping: Map query rows onto result types by attribute
      name when no mapper is registered (default: True)
    """
    connection_string: str = ''
    provider_name: str = ''
    command_timeout_seconds: int = 30
    # Connection pooling parameters
    use_pool: bool = False
    pool_max_connections: int = 5
    pool_max_idle_time: int = 300
    pool_wait_timeout: int = 30
    fetch_size: int = 500
    reflection_mapping: bool = True

    def __post_init__(self):
        if self.command_timeout_seconds is None or self.command_timeout_seconds < 0:
            raise ValueError('command_timeout_seconds cannot be negative')
        if not self.fetch_size or self.fetch_size < 1:
            raise ValueError('fetch_size must be at least 1')
