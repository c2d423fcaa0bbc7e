"""Domain-specific exceptions."""


class ServiceError(Exception):
    pass


class ConfigurationInvalid(ServiceError):
    pass


class PermissionDenied(ServiceError):
    def __init__(self, user_id: int, required: str) -> None:
        super().__init__(f"user {user_id} lacks the {required} role")
        self.user_id = user_id
        self.required = required


class RecipientDeliveryFailed(ServiceError):
    def __init__(self, recipient_id: int, reason: str) -> None:
        super().__init__(f"delivery to {recipient_id} failed: {reason}")
        self.recipient_id = recipient_id
        self.reason = reason
