"""TLS certificate inspection helpers."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509


class TLSInspectionError(RuntimeError):
    """Raised when a certificate cannot be read or parsed."""


@dataclass(frozen=True)
class CertificateInfo:
    """Validity window of an issued certificate."""

    path: Path
    not_valid_before: datetime
    not_valid_after: datetime

    def days_remaining(self, now: datetime | None = None) -> int:
        """Return whole days until expiry (negative once expired)."""
        moment = now or datetime.now(UTC)
        return (self.not_valid_after - moment).days

    def is_expired(self, now: datetime | None = None) -> bool:
        """Return True when the certificate is no longer valid."""
        return self.not_valid_after <= (now or datetime.now(UTC))

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "path": str(self.path),
            "not_valid_before": self.not_valid_before.isoformat(),
            "not_valid_after": self.not_valid_after.isoformat(),
            "days_remaining": self.days_remaining(),
        }


def inspect_certificate(path: Path) -> CertificateInfo:
    """Load the first certificate of the PEM bundle at *path*."""
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise TLSInspectionError(f"Unable to read certificate {path}: {exc}") from exc
    try:
        certificate = x509.load_pem_x509_certificate(data)
    except ValueError as exc:
        raise TLSInspectionError(f"Unable to parse certificate {path}: {exc}") from exc

    return CertificateInfo(
        path=path,
        not_valid_before=certificate.not_valid_before_utc,
        not_valid_after=certificate.not_valid_after_utc,
    )


__all__ = ["CertificateInfo", "TLSInspectionError", "inspect_certificate"]
