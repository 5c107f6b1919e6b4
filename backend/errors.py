"""
Workblix -- Error Types
Every failure the service reports carries the HTTP status it maps to.
"""


class WorkblixError(Exception):
    status_code = 500
    default_message = "Internal server error. Please try again."

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class NotFound(WorkblixError):
    status_code = 404
    default_message = "Not found."


class TemplateNotFound(NotFound):
    def __init__(self, template_id):
        super().__init__(f"Template {template_id} not found")
        self.template_id = template_id


class ProfileNotFound(NotFound):
    default_message = "Profile not found."


class Unauthorized(WorkblixError):
    status_code = 401
    default_message = "Unauthorized"


class ValidationFailure(WorkblixError):
    status_code = 400
    default_message = "Invalid request."


class TemplateSyntaxError(ValidationFailure):
    default_message = "Malformed template."


class SignatureVerificationFailure(WorkblixError):
    status_code = 400
    default_message = "Webhook signature verification failed"


class ExternalServiceFailure(WorkblixError):
    status_code = 502
    default_message = "An external service failed. Please try again."


class RenderFailure(WorkblixError):
    status_code = 500
    default_message = "Failed to generate PDF. Please try again."


class ConfigurationError(WorkblixError):
    status_code = 500
    default_message = "Service not configured."


class UsageLimitReached(WorkblixError):
    status_code = 403
    default_message = "Monthly limit reached. Upgrade to Pro for unlimited generations."
