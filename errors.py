class LedgerError(ValueError):
    pass


class NotFoundError(LedgerError):
    pass


class ForbiddenError(LedgerError):
    pass


class InvalidArgumentError(LedgerError):
    pass
