"""Utility functions for tunnel-serve."""

# Port range constants
MIN_PORT = 1
MAX_PORT = 65535

# Exit codes of a tunnel process that count as a clean shutdown. ssh exits
# with 255 when the remote end drops the connection.
BENIGN_EXIT_CODES = frozenset({0, 255})

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def validate_port(port: int, port_name: str = "Port") -> None:
    """Validate port number range.

    Args:
        port: Port number to validate
        port_name: Name of the port for error messages

    Raises:
        ValueError: If port is not in valid range (1-65535)
    """
    if isinstance(port, bool) or not isinstance(port, int) or not (
        MIN_PORT <= port <= MAX_PORT
    ):
        raise ValueError(f"{port_name} must be between {MIN_PORT} and {MAX_PORT}")


def parse_port(value: str | int, port_name: str = "Port") -> int:
    """Parse a port given on the command line.

    Raises:
        ValueError: If the value is not an integer in range
    """
    if isinstance(value, str):
        text = value.strip()
        if not text.lstrip("+-").isdigit():
            raise ValueError(
                f"{port_name} must be an integer between {MIN_PORT} and {MAX_PORT}, "
                f"got '{value}'"
            )
        value = int(text)
    validate_port(value, port_name)
    return value


def exit_status_for(exit_code: int | None) -> int:
    """Map a tunnel's raw exit code to the tool's exit status.

    ``None`` is what connection-backed tunnels report when they close.
    """
    if exit_code is None or exit_code in BENIGN_EXIT_CODES:
        return EXIT_SUCCESS
    return EXIT_FAILURE
