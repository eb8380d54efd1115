from __future__ import annotations

from typing import Any


class AdsyncError(RuntimeError):
    pass


class ConfigError(AdsyncError):
    """Missing or malformed configuration. Raised before any network call."""


class VendorAPIError(AdsyncError):
    def __init__(self, vendor: str, status_code: int, body: str, *, code: Any = None):
        self.vendor = vendor
        self.status_code = status_code
        self.body = (body or "").strip()[:4000]
        self.code = code
        super().__init__(f"{vendor} API error: {status_code} {self.body}")


class ReportJobError(AdsyncError):
    def __init__(self, message: str, payload: Any = None):
        self.payload = payload
        super().__init__(message)


class ReportTimeoutError(ReportJobError):
    pass


class StoreError(AdsyncError):
    pass
