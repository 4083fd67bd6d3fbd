"""Exceptions raised by the license provisioning queue and license activation."""


class ProvisioningError(Exception):
    """Base class for failures while provisioning a queue job."""


class ProviderError(ProvisioningError):
    """A payment provider call failed (network, 5xx, rate limit or rejected request)."""

    def __init__(self, message: str, code: str | None = None, http_status: int | None = None):
        super().__init__(message)
        self.code = code
        self.http_status = http_status


class KeyGenerationExhausted(ProvisioningError):
    """No unique license key was found within the allowed number of attempts."""


class PersistenceError(ProvisioningError):
    """The subscription exists at the provider but the local records could not be written."""


class SiteBatchError(ProvisioningError):
    """Provisioning stopped at one site of a multi-site job."""

    def __init__(self, site: str, cause: Exception):
        super().__init__(f"Site {site} failed: {cause}")
        self.site = site
        self.cause = cause


class InvalidPayloadError(ProvisioningError):
    """An inbound event or stored job payload could not be parsed."""


class LicenseActivationError(Exception):
    """A license could not be bound to a site; ``http_status`` is the API answer."""

    http_status = 400


class LicenseNotFound(LicenseActivationError):
    http_status = 404


class LicenseOwnershipError(LicenseActivationError):
    """The license belongs to another customer."""

    http_status = 403


class LicenseConflict(LicenseActivationError):
    """The license is cancelled, still provisioning or bound to another site."""

    http_status = 409
