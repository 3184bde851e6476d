"""Errors raised while fetching, parsing and verifying CRX packages.

Every error is terminal for the fetch that raised it. The underlying cause,
when there is one, is chained on ``__cause__``.
"""


class CrxError(IOError):
    pass


class BadCrx(CrxError):
    """The downloaded bytes are not a structurally valid CRX."""


class NotAPackage(BadCrx):
    pass


class MalformedHeader(BadCrx):
    pass


class ArchiveParseFailed(BadCrx):
    pass


class CrxVerificationError(CrxError):
    """The CRX is well formed but could not be authenticated."""


class InvalidPublicKey(CrxVerificationError):
    pass


class UnsupportedKeyType(CrxVerificationError):
    pass


class IdentifierMismatch(CrxVerificationError):

    def __init__(self, computed_id: str, app_id: str) -> None:
        super().__init__(f"Public key mismatch ({computed_id})")
        self.computed_id = computed_id
        self.app_id = app_id


class SignatureInvalid(CrxVerificationError):
    pass


class CrxDownloadError(CrxError):
    pass


class FetchFailed(CrxDownloadError):
    pass


class DownloadReadFailed(CrxDownloadError):
    pass
