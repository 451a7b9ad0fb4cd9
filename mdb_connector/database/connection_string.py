"""
Connection string construction.

Turns a DatabaseDescriptor into a ``mongodb://`` URI. Pure functions, no I/O.
"""

from urllib.parse import quote_plus, urlencode

from ..config import DatabaseDescriptor
from ..constants import CONNECTION_SCHEME, REPLICA_SET_DISABLED


def format_hosts(descriptor: DatabaseDescriptor) -> str:
    """Return the host clause, in configured order."""
    return ",".join(descriptor.host_list)


def format_credentials(descriptor: DatabaseDescriptor) -> str:
    """
    Return ``username:password@`` when both are set, otherwise an empty string.

    A lone username or password is dropped silently.
    """
    if not descriptor.has_credentials:
        return ""
    return f"{quote_plus(descriptor.username)}:{quote_plus(descriptor.password)}@"


def connection_options(descriptor: DatabaseDescriptor) -> dict[str, str | int]:
    """
    Collect the query-string options of a descriptor, in emission order.

    Args:
        descriptor: Database descriptor

    Returns:
        Ordered mapping of option name to value; empty when nothing applies
    """
    options: dict[str, str | int] = {}

    if descriptor.max_pool_size:
        options["maxPoolSize"] = descriptor.max_pool_size

    if descriptor.read_preference:
        options["readPreference"] = descriptor.read_preference

    if descriptor.replica_set and descriptor.replica_set != REPLICA_SET_DISABLED:
        options["replicaSet"] = descriptor.replica_set

    if descriptor.ssl is True:
        options["ssl"] = "true"

    if descriptor.has_credentials:
        if descriptor.auth_database:
            options["authSource"] = descriptor.auth_database
        if descriptor.auth_mechanism:
            options["authMechanism"] = descriptor.auth_mechanism

    return options


def encode_options(options: dict[str, str | int]) -> str:
    """Encode options as ``?a=b&c=d``, or an empty string when there are none."""
    if not options:
        return ""
    return f"?{urlencode(options)}"


def build_connection_string(descriptor: DatabaseDescriptor) -> str:
    """
    Build the connection string for a database descriptor.

    Shape: ``mongodb://{credentials}{hosts}/{id}{?options}``

    Example:
        >>> build_connection_string(DatabaseDescriptor(
        ...     id="testdb", hosts="127.0.0.1:27017", replicaSet="rs0",
        ...     readPreference=None))
        'mongodb://127.0.0.1:27017/testdb?replicaSet=rs0'
    """
    credentials = format_credentials(descriptor)
    hosts = format_hosts(descriptor)
    options = encode_options(connection_options(descriptor))
    return f"{CONNECTION_SCHEME}{credentials}{hosts}/{descriptor.id}{options}"


def mask_credentials(connection_string: str) -> str:
    """Hide the password of a connection string for logging."""
    if "@" not in connection_string or not connection_string.startswith(CONNECTION_SCHEME):
        return connection_string
    userinfo, _, rest = connection_string[len(CONNECTION_SCHEME):].partition("@")
    username = userinfo.split(":", 1)[0]
    return f"{CONNECTION_SCHEME}{username}:***@{rest}"
