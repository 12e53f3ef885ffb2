class MazeLangError(Exception):
    pass

class ProgramStructureError(MazeLangError):
    """Raised when a program document is malformed (missing version or actions)."""
    pass

class ResolutionError(MazeLangError):
    """Raised when a called function is not defined in the program."""
    pass

class PreconditionError(MazeLangError):
    """Raised when a primitive action's requirements are not met by the world."""
    pass

class RunawayError(MazeLangError):
    """Raised when an iteration or operation cap is exceeded."""
    pass

class ExecutorStateError(MazeLangError):
    pass
