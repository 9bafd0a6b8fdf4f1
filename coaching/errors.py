class PlannerError(Exception):
    """Base class for errors raised by the planner services"""


class ValidationError(PlannerError):
    """Input rejected before any remote call was attempted"""


class NotFoundError(PlannerError):
    pass


class PermissionDenied(PlannerError):
    pass
