class StationError(Exception):
    """Base exception for station domain errors."""

    status = 400


class StoreUnavailable(StationError):
    """Raised when the replicated store cannot be reached after the retry cap."""

    status = 503


class TaskError(StationError):
    """Operator-facing task error. Never changes shared state."""

    def __init__(self, message, task_id=None):
        super().__init__(message)
        self.task_id = task_id


class TaskNotFound(TaskError):
    status = 404


class AlreadyAssigned(TaskError):
    status = 409


class TaskLimitExceeded(TaskError):
    status = 409


class NotAssignedToYou(TaskError):
    status = 403


class TaskAlreadyResolved(TaskError):
    status = 409


class TaskExpired(TaskError):
    status = 410


class StillExecuting(TaskError):
    status = 425

    def __init__(self, message, task_id=None, remaining_ms=0):
        super().__init__(message, task_id)
        self.remaining_ms = remaining_ms


class ChallengeError(StationError):
    """Operator-facing challenge error. Never changes shared state."""

    def __init__(self, message, challenge_id=None):
        super().__init__(message)
        self.challenge_id = challenge_id


class ChallengeNotFound(ChallengeError):
    status = 404


class ChallengeNotAllowed(ChallengeError):
    status = 403


class ChallengeConflict(ChallengeError):
    status = 409


class ChallengeExpired(ChallengeError):
    status = 410


class ChallengeCooldown(ChallengeError):
    status = 429

    def __init__(self, message, challenge_id=None, remaining_ms=0):
        super().__init__(message, challenge_id)
        self.remaining_ms = remaining_ms
