"""Apply numbered SQL migrations to ClickHouse over HTTP and track them in a schema table."""

__version__ = "0.1.0"
__all__ = ["__version__"]