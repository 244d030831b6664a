"""HTTP response statuses raised as exceptions."""

__all__ = ["Status", "OK", "Created", "NoContent",
           "BadRequest", "Forbidden", "NotFound", "MethodNotAllowed",
           "Conflict", "InternalServerError"]


class Status(Exception):

    """
    a response status

    Raise from a handler or wrapper to end the request early with given
    `body`.

    """

    code = None
    reason = None

    def __init__(self, body="", **kwargs):
        super(Status, self).__init__(body)
        self.body = body
        self.__dict__.update(kwargs)

    def __str__(self):
        return f"{self.code} {self.reason}"


class OK(Status):
    code, reason = "200", "OK"


class Created(Status):

    """Pass the new resource's `location`."""

    code, reason = "201", "Created"


class NoContent(Status):
    code, reason = "204", "No Content"


class BadRequest(Status):
    code, reason = "400", "Bad Request"


class Forbidden(Status):
    code, reason = "403", "Forbidden"


class NotFound(Status):
    code, reason = "404", "Not Found"


class MethodNotAllowed(Status):

    """Pass the resource's `allowed` method names."""

    code, reason = "405", "Method Not Allowed"


class Conflict(Status):
    code, reason = "409", "Conflict"


class InternalServerError(Status):
    code, reason = "500", "Internal Server Error"
