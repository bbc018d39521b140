"""Security posture audit for bundle directories.

Run as the final step of bundle creation (and on demand before a load).
Findings are written to ``security-audit.txt`` inside the bundle; they are
advisory and never abort the operation that requested the audit.
"""
from __future__ import annotations

import datetime
import fnmatch
import logging
import os
import stat
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from easy_splunk.integrity.atomic import atomic_write_text
from easy_splunk.integrity.checksum import CHECKSUM_SUFFIX, checksum_path

logger = logging.getLogger(__name__)

AUDIT_REPORT_FILENAME = "security-audit.txt"

# Members that are expected to be secret and must not be group/world readable.
SECRET_MEMBERS: frozenset[str] = frozenset({"versions.env"})

_SENSITIVE_PATTERNS: tuple[str, ...] = ("*.key", "*.pem", "id_rsa", "*.bak", "*.swp", "*.swo")


class AuditSeverity(str, Enum):
    """Severity of an audit finding."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class AuditFinding:
    """A single issue discovered during the audit.

    Attributes
    ----------
    check_id:
        Short identifier of the check that raised the finding.
    severity:
        How urgently the finding should be addressed.
    path:
        Bundle-relative path of the offending file.
    description:
        Human-readable description.
    remediation:
        Suggested fix.
    """

    check_id: str
    severity: AuditSeverity
    path: str
    description: str
    remediation: str


@dataclass
class AuditReport:
    """Result of auditing one bundle directory."""

    bundle_dir: Path
    audited_at: str
    findings: list[AuditFinding] = field(default_factory=list)
    passed_checks: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        """Return True when no findings were raised."""
        return not self.findings

    @property
    def high_severity_count(self) -> int:
        return sum(1 for f in self.findings if f.severity is AuditSeverity.HIGH)

    def render(self) -> str:
        """Render the report as plain text."""
        lines = [
            "Security audit report",
            "=====================",
            f"Bundle:  {self.bundle_dir}",
            f"Audited: {self.audited_at}",
            f"Result:  {'PASS' if self.is_clean else f'{len(self.findings)} finding(s)'}",
            "",
        ]
        if self.passed_checks:
            lines.append("Passed checks:")
            lines.extend(f"  [ok] {check}" for check in self.passed_checks)
            lines.append("")
        if self.findings:
            lines.append("Findings:")
            for finding in self.findings:
                lines.append(
                    f"  [{finding.severity.value}] {finding.check_id}: {finding.path}"
                )
                lines.append(f"      {finding.description}")
                lines.append(f"      Fix: {finding.remediation}")
            lines.append("")
        return "\n".join(lines)


class SecurityAuditor:
    """Audits a bundle directory for insecure permissions and stray secrets.

    Parameters
    ----------
    secret_members:
        Bundle-relative file names that hold secrets on purpose.
    """

    def __init__(self, secret_members: frozenset[str] = SECRET_MEMBERS) -> None:
        self._secret_members = secret_members

    def audit(self, bundle_dir: Path) -> AuditReport:
        """Run every check against *bundle_dir*."""
        report = AuditReport(
            bundle_dir=bundle_dir,
            audited_at=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        )
        files = sorted(
            p for p in bundle_dir.rglob("*")
            if p.is_file() and p.name != AUDIT_REPORT_FILENAME
        )

        for check_id, check in (
            ("secret_permissions", self._check_secret_permissions),
            ("sensitive_files", self._check_sensitive_files),
            ("archive_checksums", self._check_archive_checksums),
            ("world_writable", self._check_world_writable),
        ):
            findings = check(bundle_dir, files)
            if findings:
                report.findings.extend(findings)
            else:
                report.passed_checks.append(check_id)

        for finding in report.findings:
            logger.warning("Security audit: %s (%s)", finding.description, finding.path)
        return report

    def write_report(self, report: AuditReport, path: Path) -> Path:
        """Write the rendered *report* to *path* (mode 0644)."""
        atomic_write_text(path, report.render(), mode=0o644)
        logger.info("Security audit written to %s", path)
        return path

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _check_secret_permissions(
        self, bundle_dir: Path, files: list[Path]
    ) -> list[AuditFinding]:
        findings: list[AuditFinding] = []
        for path in files:
            if path.name not in self._secret_members and not path.name.endswith(".key"):
                continue
            mode = stat.S_IMODE(path.stat().st_mode)
            if mode & 0o077:
                findings.append(AuditFinding(
                    check_id="secret_permissions",
                    severity=AuditSeverity.HIGH,
                    path=_relative(bundle_dir, path),
                    description=f"Secret file has permissions {mode:o}",
                    remediation="chmod 600 the file.",
                ))
        return findings

    def _check_sensitive_files(
        self, bundle_dir: Path, files: list[Path]
    ) -> list[AuditFinding]:
        findings: list[AuditFinding] = []
        for path in files:
            if any(fnmatch.fnmatch(path.name, pattern) for pattern in _SENSITIVE_PATTERNS):
                findings.append(AuditFinding(
                    check_id="sensitive_files",
                    severity=AuditSeverity.HIGH,
                    path=_relative(bundle_dir, path),
                    description="Potentially sensitive or unwanted file in bundle",
                    remediation="Remove the file or transfer it out of band.",
                ))
        return findings

    def _check_archive_checksums(
        self, bundle_dir: Path, files: list[Path]
    ) -> list[AuditFinding]:
        findings: list[AuditFinding] = []
        for path in files:
            if ".tar" not in path.name or path.name.endswith(CHECKSUM_SUFFIX):
                continue
            if not checksum_path(path).is_file():
                findings.append(AuditFinding(
                    check_id="archive_checksums",
                    severity=AuditSeverity.MEDIUM,
                    path=_relative(bundle_dir, path),
                    description="Archive has no .sha256 checksum file",
                    remediation="Regenerate the bundle or write the checksum record.",
                ))
        return findings

    def _check_world_writable(
        self, bundle_dir: Path, files: list[Path]
    ) -> list[AuditFinding]:
        findings: list[AuditFinding] = []
        for path in files:
            if os.stat(path).st_mode & stat.S_IWOTH:
                findings.append(AuditFinding(
                    check_id="world_writable",
                    severity=AuditSeverity.MEDIUM,
                    path=_relative(bundle_dir, path),
                    description="File is world-writable",
                    remediation="chmod o-w the file.",
                ))
        return findings


def _relative(bundle_dir: Path, path: Path) -> str:
    return path.relative_to(bundle_dir).as_posix()


__all__ = [
    "AUDIT_REPORT_FILENAME",
    "AuditFinding",
    "AuditReport",
    "AuditSeverity",
    "SecurityAuditor",
]
