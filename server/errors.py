"""Exceptions raised by game sessions and storage."""


class GameError(Exception):
    """
    A request that cannot be honoured.

    The message is reported back to the requesting client verbatim in a
    Status:Error reply; session state is left untouched.
    """


class StorageError(GameError):
    """Writing or replacing a persisted game file failed."""


class GameInvariantError(Exception):
    """Session state reached a condition the protocol never allows."""
