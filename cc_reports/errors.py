class ReportError(Exception):
    status = 500


class AuthorizationMissing(ReportError):
    status = 401

    def __init__(self, message="Server token missing"):
        super().__init__(message)


class ValidationError(ReportError):
    status = 400


class UpstreamShapeError(ReportError):
    """Raised by the source client when a page lacks its record array."""
    status = 502


class PlanError(ReportError):
    status = 422


class PlanParseError(PlanError):
    pass


class PlanStructureError(PlanError):
    pass


class ForbiddenKindError(PlanError):
    status = 403


class QueryExecutionError(PlanError):
    pass
