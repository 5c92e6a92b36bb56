"""
Base exception for the Airforms service.

Every domain error raised by a service derives from ``AirformsError``; the
HTTP layer maps the concrete subclasses to status codes.
"""


class AirformsError(Exception):
    pass
