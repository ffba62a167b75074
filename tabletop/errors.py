"""Error taxonomy shared by every handler, plus the Flask handlers that render it."""

from flask import jsonify
from werkzeug.exceptions import HTTPException


class CampaignError(Exception):
    status_code = 500
    code = 'error'
    message = 'Request failed'

    def __init__(self, message=None):
        super().__init__(message or self.message)
        self.message = message or self.message

    def to_dict(self):
        return {'error': self.code, 'message': self.message}


class InvalidCredentials(CampaignError):
    """Unknown username or wrong password. Deliberately indistinguishable."""
    status_code = 401
    code = 'invalid_credentials'
    message = 'Invalid username or password'


class Unauthorized(CampaignError):
    """Role check failed."""
    status_code = 403
    code = 'unauthorized'
    message = 'Permission denied'


class NotAuthenticated(Unauthorized):
    status_code = 401
    code = 'not_authenticated'
    message = 'Not authenticated'


class NotFound(CampaignError):
    status_code = 404
    code = 'not_found'
    message = 'Record not found'


class ValidationError(CampaignError):
    """Malformed input. ``fields`` maps a field name to its messages."""
    status_code = 400
    code = 'validation_error'
    message = 'Invalid input'

    def __init__(self, fields=None, message=None):
        super().__init__(message)
        self.fields = fields or {}

    def to_dict(self):
        data = super().to_dict()
        data['fields'] = self.fields
        return data


def register_error_handlers(app):
    @app.errorhandler(CampaignError)
    def handle_campaign_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'error': error.name.lower().replace(' ', '_'), 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        app.logger.exception('Unhandled error: %s', error)
        return jsonify({'error': 'internal_error', 'message': 'Something went wrong'}), 500
