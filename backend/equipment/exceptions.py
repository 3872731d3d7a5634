"""
Domain errors raised by equipment and transfer request operations.
Each carries a fixed, user-facing message.
"""


class EquipmentError(Exception):
    default_message = 'Equipment operation failed'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class EquipmentNotFound(EquipmentError):
    default_message = 'Equipment not found'


class TransferError(EquipmentError):
    default_message = 'Transfer request operation failed'


class TransferRequestNotFound(TransferError):
    default_message = 'Transfer request not found'


class InvalidTransferState(TransferError):
    default_message = 'Transfer request is not pending'


class TransferPermissionDenied(TransferError):
    default_message = 'Only the original requester can perform this action'


class InvalidEquipmentOperation(EquipmentError):
    default_message = 'Invalid equipment operation'
