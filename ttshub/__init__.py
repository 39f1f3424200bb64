"""ttshub — provision and operate a local inference service."""

__version__ = "0.1.0"
