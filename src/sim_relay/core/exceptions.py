"""Exception hierarchy for sim-relay.

All errors raised by the relay derive from SimRelayError so callers can
catch relay failures without swallowing unrelated exceptions.
"""


class SimRelayError(Exception):
    """Base class for all sim-relay errors."""

    pass


class ConfigError(SimRelayError):
    """Configuration could not be loaded or failed validation.

    Raised when:
    - Config file not found
    - Invalid YAML syntax
    - Schema validation fails
    """

    pass


class SpawnError(SimRelayError):
    """Kernel process could not be launched."""

    pass


class ProcessAlreadyRunningError(SimRelayError):
    """A session already owns a live kernel process."""

    def __init__(self, session_id: str) -> None:
        """Initialize with the offending session.

        Args:
            session_id: Session that already has a live handle.

        """
        super().__init__(f"Session {session_id[:8]} already has a live kernel process")
        self.session_id = session_id
