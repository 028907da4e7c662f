"""Error hierarchy.

Configuration errors are raised before any network activity and end the
process with a non-zero exit. Frame errors are local to one chunk or frame
and are suppressed unless the transport policy says otherwise.
"""


class SealpostError(Exception):
    """Base class for all sealpost errors."""


class ConfigurationError(SealpostError):
    """Bad settings, unusable directories, missing inputs."""


class KeypairError(ConfigurationError):
    """A keypair artifact is missing, unreadable, or malformed."""


class FrameError(SealpostError):
    """A single chunk or frame could not be processed."""


class EncryptionError(FrameError):
    pass


class DecryptionError(FrameError):
    pass


class PublishError(FrameError):
    pass


class RelayError(SealpostError):
    """The relay could not be polled."""
