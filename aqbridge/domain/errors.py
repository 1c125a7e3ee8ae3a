from __future__ import annotations


class BridgeError(Exception):
    """Base class for everything the bridge raises on purpose."""


class TransientIOError(BridgeError):
    """Read or write on the byte source failed; the loop keeps going."""


class SourceUnavailableError(BridgeError):
    """The byte source could not be opened at start."""


class MalformedFrameError(BridgeError):
    """A frame could not be used (overflowed the accumulation buffer)."""


class MalformedRecordError(MalformedFrameError):
    """A decoded record is short of fields or carries a bad integer."""


class ConversionDomainError(BridgeError):
    """The unit conversion is undefined for the given temperature."""


class BatchFullError(BridgeError):
    pass


class BrokerConnectError(BridgeError):
    pass


class PublishFailure(BridgeError):
    pass
