"""Exceptions raised by the library core."""

from __future__ import annotations


class LibraryError(Exception):
    """Base class for home library errors."""


class IdentificationError(LibraryError):
    """The identification service could not be reached or answered garbage.

    Timeouts, network failures, HTTP errors and malformed responses all end
    up here; callers show one generic connectivity message.
    """


class QueueBusyError(LibraryError):
    """Commit was requested while batch items are still waiting or running."""


class InvalidTransitionError(LibraryError):
    """A batch item was asked to move to a status it cannot reach."""


class ItemNotFoundError(LibraryError):
    """No batch item with the given id is queued."""
