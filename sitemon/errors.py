"""Error taxonomy for the monitor core.

Probe failures are not exceptions; they travel as ``ErrorKind`` values inside
``ProbeOutcome``. Only configuration problems raise.
"""


class ConfigError(Exception):
    """The target source could not be turned into a registry."""

    kind = "config"


class MalformedSource(ConfigError):
    kind = "malformed"


class InvalidAddress(ConfigError):
    kind = "invalid_address"

    def __init__(self, name: str, value: object):
        self.name = name
        self.value = value
        super().__init__(f"target {name!r}: {value!r} is not an IPv4 or IPv6 address")


class DuplicateName(ConfigError):
    kind = "duplicate_name"

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"target {name!r} is defined more than once")


class SettingsError(ValueError):
    def __init__(self, field: str, reason: str):
        self.field = field
        super().__init__(f"{field}: {reason}")
