class FleetError(Exception):
    """Base class for failures the route layer turns into responses."""

    message = "Request failed."

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationFailed(FleetError):
    """Expected, recoverable failure carrying every user-facing reason."""

    message = "Validation failed."

    def __init__(self, errors, message=None):
        self.errors = list(errors)
        super().__init__(message)


class InvalidTransition(ValidationFailed):
    def __init__(self, entity, current_status, event):
        self.entity = entity
        self.current_status = current_status
        self.event = event
        super().__init__(
            [f'Cannot {event} a {entity} with status "{current_status}".'],
            message=f"Invalid {entity} transition.",
        )


class EntityNotFound(FleetError):
    def __init__(self, entity, entity_id=None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} not found.")


class EngineError(FleetError):
    """Unexpected storage failure; the transition was rolled back."""

    message = "The operation could not be completed. No changes were saved."
