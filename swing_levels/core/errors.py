"""Error taxonomy shared by the swing engines and the services wrapping them."""


class SwingLevelsError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(SwingLevelsError, ValueError):
    """Raised when an engine configuration value is out of its valid domain."""


class BarSequenceError(SwingLevelsError, ValueError):
    """Raised when bar indices rewind or skip ahead instead of advancing by one."""


class EngineInvariantError(SwingLevelsError, RuntimeError):
    """Raised when derived state breaks an internal consistency rule and cannot be trusted."""
