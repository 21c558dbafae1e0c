from aos_control.errors import ConfigError
from aos_control.models import ActiveProfile


def _escape(value: str) -> str:
    # ODBC: values containing separators or braces go inside {} with } doubled
    if any(c in value for c in ";{}=") or value != value.strip():
        return "{" + value.replace("}", "}}") + "}"
    return value


def connection_string(
    profile: ActiveProfile,
    server: str | None = None,
    database: str | None = None,
    user: str | None = None,
    password: str | None = None,
    modelstore: bool = False,
) -> str:
    """ODBC-style connection string for the business or model store database.

    Explicit arguments win over the active profile. Without *user* the string
    asks for integrated (trusted) authentication.
    """
    server = server or profile.database_server
    if database is None:
        database = profile.modelstore_database if modelstore else profile.database_name
    if not server:
        raise ConfigError("No database server given and none in the active profile")
    if not database:
        raise ConfigError("No database name given and none in the active profile")

    parts = [f"Server={_escape(server)}", f"Database={_escape(database)}"]
    if user:
        parts.append(f"UID={_escape(user)}")
        parts.append(f"PWD={_escape(password or '')}")
    else:
        parts.append("Trusted_Connection=Yes")
    return ";".join(parts) + ";"
