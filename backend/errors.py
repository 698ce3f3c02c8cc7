"""Error taxonomy shared by the transport, transfer engine and session controller."""


class BlueBoothError(Exception):
    """Base class for every failure this application reports to the user."""


class RadioUnavailable(BlueBoothError):
    """The local radio is missing, powered off, or may not be used."""


class TransportError(BlueBoothError):
    """Listening, accepting or connecting failed."""


class SourceUnavailable(BlueBoothError):
    """The file selected for sending could not be opened."""


class DestinationUnavailable(BlueBoothError):
    """No destination could be created for an incoming file."""


class StreamIOError(BlueBoothError):
    """A read or write on a connection or file stream failed mid-copy."""


class TrailerMismatch(StreamIOError):
    """The completion trailer was missing or did not match the received payload."""


class PermissionDenied(BlueBoothError):
    """The permission gate refused a capability."""


class SessionBusy(BlueBoothError):
    """A transfer session is already in flight."""


class InvalidSelection(BlueBoothError):
    """No file was selected, or the device index is not in the presented list."""
