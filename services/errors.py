"""
Error taxonomy for the obligation engine.

Each error carries the HTTP status the JSON surfaces answer with, so routes
can turn any of them into a structured ``{success, message, error}`` body.
"""


class ObligationError(Exception):
    """Base class for every error the engine surfaces to a caller"""
    status_code = 500
    code = 'obligation_error'

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'success': False, 'message': self.message, 'error': self.code}


class StateViolation(ObligationError):
    """An invalid lifecycle transition was attempted"""
    status_code = 409
    code = 'state_violation'

    def __init__(self, entity, current, requested):
        super().__init__(f"Cannot {requested} {entity} in state '{current}'")
        self.entity = entity
        self.current = current
        self.requested = requested

    def to_dict(self):
        data = super().to_dict()
        data.update({'current_state': self.current, 'requested': self.requested})
        return data


class NotFound(ObligationError):
    status_code = 404
    code = 'not_found'

    def __init__(self, entity, entity_id):
        super().__init__(f'{entity.title()} #{entity_id} not found')
        self.entity = entity
        self.entity_id = entity_id


class InvalidArgument(ObligationError):
    status_code = 400
    code = 'invalid_argument'


class PersistenceFailure(ObligationError):
    """The store rejected a read or write"""
    status_code = 500
    code = 'persistence_failure'

    def __init__(self, message, original=None):
        super().__init__(message)
        self.original = original


class RunAbort(ObligationError):
    """A scheduler run could not acquire its lock or read its due set"""
    status_code = 409
    code = 'run_abort'


class PermissionDenied(ObligationError):
    status_code = 403
    code = 'permission_denied'
