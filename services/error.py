import sys
import traceback
import services.logger as log

# Initialize logger
l = log.get_logger()


class BridgeError(Exception):
    """Base class for every failure the relay knows how to report."""


class ConfigurationMissing(BridgeError):
    """A bot token is absent; the bridge cannot start."""


class NotReady(BridgeError):
    """A send was attempted before the platform connection became ready."""


class InvalidTarget(BridgeError):
    """The destination channel does not exist or cannot receive posts."""


class LookupFailure(BridgeError):
    """A best-effort lookup (reply target, masquerades, mappings) failed."""


class TransportFailure(BridgeError):
    """The platform rejected a request or the connection broke mid-send."""


class BridgeConflict(BridgeError):
    """More than one enabled bridge claims the same source channel."""


def _handle_uncaught_exceptions(exc_type, exc_value, exc_traceback):
    """Global exception handler for uncaught exceptions."""
    if issubclass(exc_type, KeyboardInterrupt):
        # Call default handler for keyboard interrupt (e.g. Ctrl+C)
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return

    # Log the full traceback for debugging
    l.critical(
        "Unhandled exception caught:\n"
        + ''.join(traceback.format_exception(exc_type, exc_value, exc_traceback))
    )


def install_excepthook():
    sys.excepthook = _handle_uncaught_exceptions
