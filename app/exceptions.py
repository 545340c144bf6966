class ZapperError(Exception):
    """Base class for all zapper failures"""


class ConfigurationError(ZapperError):
    """Invalid or missing startup configuration"""


class CheckpointError(ZapperError):
    """Checkpoint file could not be read or written"""


class CheckpointNotFound(CheckpointError):
    """No checkpoint has been written yet"""


class ZapRequestError(ZapperError):
    """Invoice description is not a usable zap request"""


class MalformedEvent(ZapRequestError):
    pass


class InvalidSignature(ZapRequestError):
    pass


class RecipientTagCount(ZapRequestError):
    pass


class ReferenceTagCount(ZapRequestError):
    pass


class ZapNoteError(ZapperError):
    """Zap receipt could not be built"""


class MissingPaymentProof(ZapNoteError):
    pass


class InvoiceBackendError(ZapperError):
    """Payment backend call failed (transient)"""


class MalformedInvoice(InvoiceBackendError):
    """Backend returned an invoice that does not fit the Invoice model.

    Retrying returns the same invoice, so the caller skips past pay_index
    when the backend reported one.
    """

    def __init__(self, message: str, pay_index=None):
        super().__init__(message)
        self.pay_index = pay_index
