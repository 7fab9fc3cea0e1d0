class ErpError(Exception):
    """Base error for the settlement, inventory and production services.

    ``details`` carries machine-readable context (which item, which order,
    what quantity was short) so the caller can build its own message.
    """

    kind = "error"
    status_code = 400

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self):
        return {"kind": self.kind, "error": self.message, "details": self.details}


class ValidationError(ErpError):
    kind = "validation"
    status_code = 400


class NotFoundError(ErpError):
    kind = "not_found"
    status_code = 404


class ConflictError(ErpError):
    kind = "conflict"
    status_code = 409
