from cms_core.domain.exceptions import CMSError


class InvariantViolation(CMSError):
    """Raised when a structural invariant of a domain object does not hold."""
