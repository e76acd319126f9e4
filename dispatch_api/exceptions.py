"""Dispute outcome errors.

Service functions raise these; the routers translate them into HTTP
responses. Every failed acceptance resolves to exactly one of them so the
losing agency can tell "taken" from "expired" from "not found".
"""


class DispatchError(Exception):
    status_code = 500
    default_detail = "Dispatch failure"

    def __init__(self, detail: str = None, status_code: int = None):
        self.detail = detail or self.default_detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.detail)


class ValidationError(DispatchError):
    status_code = 400
    default_detail = "Missing required fields"


class OrderNotFoundError(DispatchError):
    status_code = 404
    default_detail = "Order not found"


class AlreadyTakenError(DispatchError):
    status_code = 409
    default_detail = "Order unavailable. It was already accepted."


class ExpiredError(DispatchError):
    status_code = 410
    default_detail = "Acceptance window expired."


class AcceptFailedError(DispatchError):
    status_code = 400
    default_detail = "Failed to accept order"


class WebhookFailedError(DispatchError):
    status_code = 500
    default_detail = "Failed to process webhook"
