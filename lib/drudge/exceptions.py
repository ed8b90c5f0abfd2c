class WriteFailError(Exception):
    """ A generic "we failed to write to the store"
    """
    pass


class InvalidArg(Exception):
    """Represents an error stemming from some setting mismatch or invalid arg / state.
    """
    pass


class InvalidState(InvalidArg):
    """Generic "the object is in the wrong state to do the thing"
    """
    pass


class RegistrationConflict(Exception):
    """Something with the given name has already been registered.
    """

    _KIND = "entry"

    def __init__(self, name: str):
        super(RegistrationConflict, self).__init__(f"{self._KIND} '{name}' already registered")
        self.name = name


class QueueAlreadyRegisteredError(RegistrationConflict):
    """A Queue with the given name exists already
    """
    _KIND = "queue"


class JobAlreadyRegisteredError(RegistrationConflict):
    """A Job with the given name exists already
    """
    _KIND = "job"


class BackendAlreadyRegisteredError(RegistrationConflict):
    """A Backend with the given name exists already
    """
    _KIND = "backend"


class NotFound(InvalidArg):
    """A required obj indicated by a name was not found
    """

    _KIND = "entry"

    def __init__(self, name: str):
        super(NotFound, self).__init__(f"{self._KIND} '{name}' not registered")
        self.name = name


class QueueNotRegisteredError(NotFound):
    """A Queue was not found
    """
    _KIND = "queue"


class BackendNotRegisteredError(NotFound):
    """A Backend was not found
    """
    _KIND = "backend"


class UnknownJobError(NotFound):
    """A backend delivered a job that nobody registered a handler for
    """
    _KIND = "job"


class NoDefaultBackendError(InvalidArg):
    """A queue has no backend & no backend has been registered to fall back on.
    """
    pass
