"""Validation errors raised by the score engine.

All of them derive from ``ValueError`` so callers can keep handling rule
violations with a single ``except ValueError``.
"""


class RummyError(ValueError):
    """Base class for caller-correctable rejections."""


class DuplicateNameError(RummyError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Player name already taken: {name}")


class InvalidPlayerError(RummyError):
    pass


class InvalidScoreError(RummyError):
    pass


class InvalidRoundError(RummyError):
    pass


class InvalidOrderError(RummyError):
    pass


class InvalidSettingsError(RummyError):
    pass
