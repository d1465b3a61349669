"""
Filesystem trust-store adapter — PEM files + bundle, published atomically.

Adapter layer — implements the TrustStorePublisher port on a POSIX filesystem.

Uses a STAGE-THEN-SWAP pattern (the filesystem analogue of a transactional
replace):
  1. Partition entries: valid certificates (deduplicated by fingerprint) vs failures
  2. Refuse to publish when no valid certificate is left (EmptyResultGuard)
  3. Stage a complete generation: one <sha256>.pem per certificate + staged bundle
  4. Swap: re-point the target_dir symlink, then os.replace() the bundle
  5. Retire older generations

Layout produced:

  <parent>/<certs>                       → symlink to the active generation
  <parent>/.<certs>.generations/<gen>/   → <fingerprint>.pem files
  <bundle_path>                          → concatenated PEMs, fingerprint order

Readers only ever see a fully written generation: each visible path changes
with a single rename. Any error while staging discards the staging area and
leaves the previously active generation in place. If the bundle swap fails
after the directory swap, the directory swap is rolled back.

The caller serializes publications for a given target_dir.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

import structlog
from railway import ErrorCode
from railway.result import Result

from tsl_truststore.adapters import x509_codec
from tsl_truststore.domain.errors import EmptyResultGuard, StoreIOFailure, UnsupportedKeyAlgorithm
from tsl_truststore.domain.models import (
    CertificateEntry,
    ParsedCertificate,
    ParseFailure,
    PublishFailure,
    PublishResult,
)

log = structlog.get_logger()

PEM_SUFFIX = ".pem"
PEM_BEGIN = "-----BEGIN CERTIFICATE-----"
_STAGING_PREFIX = ".staging-"
_LEGACY_PREFIX = "legacy-"


@dataclass(frozen=True, slots=True)
class TrustStoreView:
    """What readers currently see at a target_dir / bundle_path pair."""

    generation: str | None
    certificate_files: tuple[str, ...] = ()
    bundle_sha256: str | None = None
    bundle_certificates: int = 0


@dataclass(slots=True)
class _Batch:
    """Entries split into publishable certificates and reported problems."""

    certificates: dict[str, ParsedCertificate] = field(default_factory=dict)
    failures: list[PublishFailure] = field(default_factory=list)
    warnings: list[PublishFailure] = field(default_factory=list)


# ─────────────────────── Paths & Generations ───────────────────────


def generations_root(target_dir: Path) -> Path:
    """Directory holding every materialized generation for a target_dir."""
    return target_dir.parent / f".{target_dir.name}.generations"


def _new_generation_id() -> str:
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


def _active_generation(target_dir: Path) -> Path | None:
    """Resolve the generation directory target_dir currently points to."""
    if not target_dir.is_symlink():
        return None
    return (target_dir.parent / os.readlink(target_dir)).resolve()


def _fsync_dir(directory: Path) -> None:
    fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


def _write_durable(path: Path, text: str) -> None:
    """Write text and flush it to disk before returning."""
    with open(path, "w", encoding="ascii", newline="\n") as handle:
        handle.write(text)
        handle.flush()
        os.fsync(handle.fileno())


def _point_symlink(link: Path, destination: Path, generation: str) -> None:
    """Atomically (re)point link at destination via rename of a fresh symlink."""
    tmp_link = link.parent / f".{link.name}.{generation}.link"
    if tmp_link.is_symlink():
        tmp_link.unlink()
    os.symlink(os.path.relpath(destination.resolve(), link.parent.resolve()), tmp_link, target_is_directory=True)
    os.replace(tmp_link, link)


def _discard(path: Path) -> None:
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path, ignore_errors=True)


# ─────────────────────── Batch Partitioning ───────────────────────


def _partition(entries: Sequence[CertificateEntry]) -> _Batch:
    """
    Split entries into valid certificates keyed by fingerprint and failures.

    Identical fingerprints collapse into one certificate (last seen wins).
    Certificates whose key size cannot be reported are kept, with a warning.
    """
    batch = _Batch()
    for entry in entries:
        match entry.parsed:
            case ParseFailure(reason):
                batch.failures.append(PublishFailure(source=entry.source, reason=reason))
            case ParsedCertificate() as cert:
                batch.certificates[cert.fingerprint] = cert
                try:
                    x509_codec.key_size_bits(cert)
                except UnsupportedKeyAlgorithm as e:
                    batch.warnings.append(PublishFailure(source=entry.source, reason=str(e)))
    return batch


# ─────────────────────── Reading the Active Store ───────────────────────


def read_active_store(target_dir: Path, bundle_path: Path) -> TrustStoreView:
    """Describe the generation currently visible to readers (no locking needed)."""
    active = _active_generation(target_dir)
    directory = active if active is not None else target_dir
    files: tuple[str, ...] = ()
    if directory.is_dir():
        files = tuple(sorted(p.name for p in directory.iterdir() if p.suffix == PEM_SUFFIX))

    bundle_sha256 = None
    bundle_certificates = 0
    if bundle_path.is_file():
        data = bundle_path.read_bytes()
        bundle_sha256 = hashlib.sha256(data).hexdigest()
        bundle_certificates = data.decode("ascii", errors="replace").count(PEM_BEGIN)

    return TrustStoreView(
        generation=active.name if active is not None else None,
        certificate_files=files,
        bundle_sha256=bundle_sha256,
        bundle_certificates=bundle_certificates,
    )


# ─────────────────────── Public Writer Class ───────────────────────


class FilesystemTrustStoreWriter:
    """
    Publish trust-store generations as PEM files plus one PEM bundle.

    Implements the TrustStorePublisher port.
    I/O exceptions are caught at this adapter boundary via Result.from_computation().
    """

    def __init__(self, target_dir: Path, bundle_path: Path, retain_generations: int = 0) -> None:
        self._target_dir = Path(target_dir)
        self._bundle_path = Path(bundle_path)
        self._retain_generations = retain_generations

    @property
    def target_dir(self) -> Path:
        return self._target_dir

    @property
    def bundle_path(self) -> Path:
        return self._bundle_path

    def publish(
        self,
        entries: Sequence[CertificateEntry],
        target_dir: Path | None = None,
        bundle_path: Path | None = None,
    ) -> Result[PublishResult]:
        """
        Atomically replace the active trust store with the valid entries.

        Returns Result[PublishResult] on success.
        Returns Result.failure(BUSINESS_RULE_ERROR, ...) when no entry is valid.
        Returns Result.failure(TECHNICAL_ERROR, ...) on any staging/swap I/O error.
        In both failure cases the previously active generation is untouched.
        """
        target = Path(target_dir) if target_dir is not None else self._target_dir
        bundle = Path(bundle_path) if bundle_path is not None else self._bundle_path
        batch = _partition(entries)

        if not batch.certificates:
            guard = EmptyResultGuard(
                f"No valid certificate among {len(entries)} entries; active store left untouched"
            )
            log.error("store.empty_batch_rejected", entries=len(entries), target_dir=str(target))
            return Result.failure(ErrorCode.BUSINESS_RULE_ERROR, str(guard), guard)

        return Result.from_computation(
            lambda: self._publish_batch(batch, target, bundle),
            ErrorCode.TECHNICAL_ERROR,
            "Failed to publish trust-store generation",
        )

    def _publish_batch(self, batch: _Batch, target: Path, bundle: Path) -> PublishResult:
        generation = _new_generation_id()
        root = generations_root(target)
        final = root / generation

        try:
            self._stage(batch, root, generation, bundle)
        except OSError as e:
            log.error("store.staging_failed", generation=generation, error=str(e))
            raise StoreIOFailure(f"Staging generation {generation} failed: {e}") from e

        try:
            self._swap(target, final, bundle, generation)
        except OSError as e:
            log.error("store.swap_failed", generation=generation, error=str(e))
            if _active_generation(target) != final.resolve():
                _discard(final)
            raise StoreIOFailure(f"Activating generation {generation} failed: {e}") from e

        self._retire(target, final, bundle)

        result = PublishResult(
            certificates_written=len(batch.certificates),
            certificates_failed=len(batch.failures),
            failures=tuple(batch.failures),
            warnings=tuple(batch.warnings),
            generation=generation,
        )
        log.info(
            "store.published",
            generation=generation,
            certificates_written=result.certificates_written,
            certificates_failed=result.certificates_failed,
            warnings=len(result.warnings),
            target_dir=str(target),
            bundle_path=str(bundle),
        )
        return result

    def _stage(self, batch: _Batch, root: Path, generation: str, bundle: Path) -> None:
        """
        Fully write the generation directory and the staged bundle.

        On any error — or interruption — everything staged so far is discarded.
        """
        staging = root / f"{_STAGING_PREFIX}{generation}"
        staged_bundle = _staged_bundle_path(bundle, generation)
        try:
            root.mkdir(parents=True, exist_ok=True)
            staging.mkdir()
            pems: list[str] = []
            for fingerprint in sorted(batch.certificates):
                pem = x509_codec.to_pem(batch.certificates[fingerprint])
                _write_durable(staging / f"{fingerprint}{PEM_SUFFIX}", pem)
                pems.append(pem)
            _fsync_dir(staging)

            bundle.parent.mkdir(parents=True, exist_ok=True)
            _write_durable(staged_bundle, "".join(pems))

            staging.rename(root / generation)
            _fsync_dir(root)
        except BaseException:
            _discard(staging)
            _discard(root / generation)
            staged_bundle.unlink(missing_ok=True)
            raise

        log.debug("store.staged", generation=generation, certificates=len(pems))

    def _swap(self, target: Path, final: Path, bundle: Path, generation: str) -> None:
        """Activate `final`: directory symlink first, then the bundle; roll back on failure."""
        staged_bundle = _staged_bundle_path(bundle, generation)
        previous = _active_generation(target)

        if target.exists() and not target.is_symlink():
            if not target.is_dir():
                staged_bundle.unlink(missing_ok=True)
                raise NotADirectoryError(f"Trust-store target is not a directory: {target}")
            legacy = generations_root(target) / f"{_LEGACY_PREFIX}{generation}"
            log.warning("store.adopting_legacy_directory", target_dir=str(target), moved_to=str(legacy))
            target.rename(legacy)
            previous = legacy

        try:
            _point_symlink(target, final, generation)
        except BaseException:
            staged_bundle.unlink(missing_ok=True)
            if previous is not None and not target.exists():
                _point_symlink(target, previous, generation)
            raise

        try:
            os.replace(staged_bundle, bundle)
            _fsync_dir(bundle.parent)
        except BaseException:
            if previous is not None:
                _point_symlink(target, previous, generation)
            else:
                target.unlink(missing_ok=True)
            staged_bundle.unlink(missing_ok=True)
            raise

    def _retire(self, target: Path, active: Path, bundle: Path) -> None:
        """
        Delete older generations beyond the retention count and stale staging leftovers.

        Best effort: the new generation is already live, so failures are logged only.
        """
        root = generations_root(target)
        try:
            inactive = [
                p for p in root.iterdir()
                if p.is_dir() and p.resolve() != active.resolve()
            ]
            stale = [p for p in inactive if p.name.startswith(_STAGING_PREFIX)]
            history = sorted(
                (p for p in inactive if not p.name.startswith(_STAGING_PREFIX)),
                key=lambda p: p.stat().st_mtime,
                reverse=True,
            )
            for path in stale + history[self._retain_generations:]:
                shutil.rmtree(path)
                log.debug("store.generation_retired", path=str(path))
            for leftover in bundle.parent.glob(f".{bundle.name}.*.tmp"):
                leftover.unlink(missing_ok=True)
        except OSError as e:
            log.warning("store.retire_failed", error=str(e), generations_root=str(root))


def _staged_bundle_path(bundle: Path, generation: str) -> Path:
    """Sibling of the bundle (same filesystem, so os.replace is atomic)."""
    return bundle.parent / f".{bundle.name}.{generation}.tmp"
