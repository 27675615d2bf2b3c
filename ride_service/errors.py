"""
Error taxonomy for the ride service.

Every error carries a stable machine-readable ``code`` (and the numeric
``opcode`` platforms already key on) so callers can branch without parsing
messages:

  ValidationFailed   - malformed / out-of-range input, user-correctable
  ConflictError      - the ride or device is in the wrong state for the call
  NotFoundError      - unknown ride / payment / device
  CollaboratorError  - device, insurance, discount, notification ... failures
"""
from typing import Any


class RideServiceError(Exception):
    code = "INVALID_ERROR"
    opcode = -504
    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "opcode": self.opcode,
            "code": self.code,
            "detail": self.message,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationFailed(RideServiceError):
    code = "FAILED_VALIDATE"
    opcode = -505
    status_code = 400
    default_message = "Request validation failed"


class InvalidTerminateTime(ValidationFailed):
    code = "INVALID_TERMINATE_TIME"
    opcode = -508
    default_message = "Ride cannot be terminated before it started"


# ---------------------------------------------------------------------------
# Domain conflicts
# ---------------------------------------------------------------------------

class ConflictError(RideServiceError):
    code = "CONFLICT"
    status_code = 409


class DeviceInUse(ConflictError):
    code = "ALREADY_USING_DEVICE"
    opcode = -509
    status_code = 400
    default_message = "Device is already in use"


class PhotoUploadNotTerminated(ConflictError):
    code = "PHOTO_UPLOAD_NOT_TERMINATE"
    opcode = -510
    status_code = 400
    default_message = "Photo can only be uploaded after the ride is terminated"


class PhotoUploadTimeout(ConflictError):
    code = "PHOTO_UPLOAD_TIMEOUT"
    opcode = -511
    status_code = 400
    default_message = "Photo upload window has expired"


class PhotoAlreadyUploaded(ConflictError):
    code = "ALREADY_PHOTO_UPLOAD"
    opcode = -512
    default_message = "Photo was already uploaded"


class RideAlreadyTerminated(ConflictError):
    code = "ALREADY_TERMINATED_RIDE"
    opcode = -513
    default_message = "Ride is already terminated"


class DeviceTooFar(ConflictError):
    code = "DEVICE_TOO_FAR"
    opcode = -515
    status_code = 400
    default_message = "Rider is too far from the device"


class RideBusy(ConflictError):
    code = "RIDE_OPERATION_IN_PROGRESS"
    opcode = -516
    default_message = "Another operation is in progress for this ride"


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class NotFoundError(RideServiceError):
    code = "NOT_FOUND"
    status_code = 404


class PaymentNotFound(NotFoundError):
    code = "CANNOT_FIND_PAYMENT"
    opcode = -507
    default_message = "Payment not found"


class RideNotFound(NotFoundError):
    code = "CANNOT_FIND_RIDE"
    opcode = -514
    default_message = "Ride not found"


class DeviceNotFound(NotFoundError):
    code = "CANNOT_FIND_DEVICE"
    opcode = -517
    default_message = "Device not found"


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

class CollaboratorError(RideServiceError):
    code = "COLLABORATOR_FAILED"
    opcode = -518
    status_code = 502
    default_message = "Upstream service failed"


class DeviceControlFailed(CollaboratorError):
    code = "DEVICE_CONTROL_FAILED"
    default_message = "Device control request failed"


class InsuranceFailed(CollaboratorError):
    code = "INSURANCE_FAILED"
    default_message = "Insurance request failed"


class DiscountFailed(CollaboratorError):
    code = "DISCOUNT_FAILED"
    default_message = "Discount request failed"


class NotificationFailed(CollaboratorError):
    code = "NOTIFICATION_FAILED"
    default_message = "Platform notification failed"


class LocationFailed(CollaboratorError):
    code = "LOCATION_FAILED"
    default_message = "Location profile lookup failed"


class EquipmentFailed(CollaboratorError):
    code = "EQUIPMENT_FAILED"
    default_message = "Equipment tracker request failed"


class MessageGatewayFailed(CollaboratorError):
    code = "MESSAGE_GATEWAY_FAILED"
    default_message = "Message gateway request failed"
