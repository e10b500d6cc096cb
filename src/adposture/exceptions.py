"""Exception types raised by adposture."""


class AssessmentError(Exception):
    """Base class for adposture errors."""


class MalformedSourceError(AssessmentError):
    """A source document is not parseable as the shape its detector expects."""


class NoSourcesError(AssessmentError):
    """No usable data source was supplied, so there is nothing to aggregate."""
