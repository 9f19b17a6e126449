"""Error taxonomy for session operations.

Guard violations on the state machine (buzzing while locked out, answering
out of turn, ...) are not errors: those calls return a no-op result. The
exceptions below are the failures a caller has to react to.
"""


class BuzzQuizError(Exception):
    status_code = 400

    def __init__(self, message: str = None):
        self.message = message or (self.__doc__ or '').strip() or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self):
        return {'error': self.message, 'kind': self.__class__.__name__}


class NotFound(BuzzQuizError):
    """Session not found"""
    status_code = 404


class AlreadyStarted(BuzzQuizError):
    """This game has already started"""
    status_code = 409


class SessionFull(BuzzQuizError):
    """This game already has two players"""
    status_code = 409


class PermissionDenied(BuzzQuizError):
    """Only the host may do that"""
    status_code = 403


class InvalidRequest(BuzzQuizError):
    """Invalid request"""
    status_code = 400


class InvalidRules(InvalidRequest):
    """Invalid rule settings"""


class RoomAllocationError(BuzzQuizError):
    """Could not allocate a free room code"""
    status_code = 503


class StoreUnavailable(BuzzQuizError):
    """Session store is unavailable"""
    status_code = 503


class VersionConflict(BuzzQuizError):
    """Session changed since it was read"""
    status_code = 409
