"""
Install/Replace Orchestrator — converge a host onto a pinned module source.

State machine::

    IDLE → VERIFYING ─ match ──→ (registered) DONE
                     │           (not registered) BUILD_READY → BUILDING → DONE
                     └ mismatch → FETCHING → CLEARING → EXTRACTING → STAMPING
                                  → REVERIFYING ─ mismatch → FATAL
                                                └ match → DEREGISTERING → COMMITTING
                                                          → BUILD_READY → BUILDING → DONE

The replacement tree is assembled next to the live one
(``<tree>.staging``) and only swapped in after gate #2 passes, so the
live tree and its registration are untouched by every failure before
COMMITTING. An interrupted run leaves either the old tree or no tree;
the next run's VERIFYING step is the repair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from provisioner.core.errors import IntegrityMismatch, SubsystemNotFound
from provisioner.core.services.source_install.checksum import checksum_matches, parse_checksum
from provisioner.core.services.source_install.descriptor import stamp_descriptor
from provisioner.core.services.source_install.detection import DetectionResult, detect
from provisioner.core.services.source_install.fetch import FetchResult, fetch
from provisioner.core.services.source_install.module_builder import ModuleBuilder

if TYPE_CHECKING:
    from provisioner.core.models.release import KernelModuleConfig
    from provisioner.core.services.steps import StepRunner

logger = logging.getLogger(__name__)

_STAGING_SUFFIX = ".staging"
_PREVIOUS_SUFFIX = ".previous"


class SourceInstallState(StrEnum):
    IDLE = "idle"
    VERIFYING = "verifying"
    DONE = "done"
    FETCHING = "fetching"
    CLEARING = "clearing"
    EXTRACTING = "extracting"
    STAMPING = "stamping"
    REVERIFYING = "reverifying"
    DEREGISTERING = "deregistering"
    COMMITTING = "committing"
    BUILD_READY = "build_ready"
    BUILDING = "building"
    FATAL = "fatal"


@dataclass
class SourceInstallResult:
    """Trace of one converge() call."""

    host: str
    version: str
    tree: str
    states: list[SourceInstallState] = field(default_factory=lambda: [SourceInstallState.IDLE])
    detection: DetectionResult | None = None
    fetch: FetchResult | None = None
    registration: str = ""          # dkms state observed on a match
    replaced: bool = False
    built: bool = False
    error: str = ""

    @property
    def state(self) -> SourceInstallState:
        return self.states[-1]

    @property
    def changed(self) -> bool:
        return self.replaced or self.built

    def to_dict(self) -> dict:
        return {
            "host": self.host,
            "version": self.version,
            "tree": self.tree,
            "state": self.state.value,
            "states": [s.value for s in self.states],
            "detection": self.detection.to_dict() if self.detection else None,
            "fetch": self.fetch.to_dict() if self.fetch else None,
            "registration": self.registration,
            "replaced": self.replaced,
            "built": self.built,
            "changed": self.changed,
            "error": self.error,
        }


class SourceInstallOrchestrator:
    """Drives one host's module tree to the pinned release.

    Args:
        steps: Step runner bound to the target host.
        module: Layout of the module source and its pinned release.
        fetch_timeout: Seconds allowed for the archive download.
        build_timeout: Seconds allowed for the module build.
    """

    def __init__(
        self,
        steps: StepRunner,
        module: KernelModuleConfig,
        *,
        fetch_timeout: int = 300,
        build_timeout: int = 1800,
    ):
        self.steps = steps
        self.host = steps.connection
        self.module = module
        self.release = module.release
        self.fetch_timeout = fetch_timeout
        self.builder = ModuleBuilder(steps, module.name, self.release.version, build_timeout)
        self.result = SourceInstallResult(
            host=self.host.name,
            version=self.release.version,
            tree=module.source_dir,
        )

    @property
    def tree(self) -> str:
        return self.module.source_dir

    @property
    def staging(self) -> str:
        return self.tree + _STAGING_SUFFIX

    @property
    def previous(self) -> str:
        return self.tree + _PREVIOUS_SUFFIX

    def _enter(self, state: SourceInstallState) -> None:
        logger.debug("[%s] %s → %s", self.host.name, self.result.state.value, state.value)
        self.result.states.append(state)

    # ── Driver ──────────────────────────────────────────────────

    def converge(self) -> SourceInstallResult:
        """Run the state machine to DONE.

        Raises:
            IntegrityMismatch: gate #1 or gate #2 failed (state FATAL).
            NetworkFailure: the archive could not be downloaded.
            BuildFailure: the module build was rejected.
            CommandFailure: any other host step failed.
        """
        try:
            self._run()
        except Exception as e:
            if self.result.state is not SourceInstallState.FATAL:
                self._enter(SourceInstallState.FATAL)
            self.result.error = str(e)
            raise
        return self.result

    def _run(self) -> None:
        self._enter(SourceInstallState.VERIFYING)
        detection = detect(self.host, self.tree, self.release.tree_checksum)
        self.result.detection = detection

        if detection.matched:
            self.result.registration = self.builder.status()
            if self.result.registration == "installed":
                logger.info("[%s] %s already installed and verified", self.host.name, self.module.registration)
                self._enter(SourceInstallState.DONE)
                return
            logger.info(
                "[%s] Source verified but module is %s; rebuilding",
                self.host.name, self.result.registration,
            )
        else:
            logger.info(
                "[%s] Source tree %s needs install (%s)",
                self.host.name, self.tree, detection.reason,
            )
            self._replace_tree()

        self._enter(SourceInstallState.BUILD_READY)
        self._enter(SourceInstallState.BUILDING)
        self.builder.install()
        self.result.built = True
        self._enter(SourceInstallState.DONE)

    # ── Replacement ─────────────────────────────────────────────

    def _replace_tree(self) -> None:
        self._enter(SourceInstallState.FETCHING)
        self.result.fetch = fetch(
            self.host,
            self.release.resolved_url,
            self.module.staging_archive,
            self.release.download_checksum,
            timeout=self.fetch_timeout,
        )

        try:
            self._stage()
        except BaseException:
            logger.warning("[%s] Discarding staged tree %s", self.host.name, self.staging)
            try:
                self.host.remove_tree(self.staging, sudo=True)
            except Exception:
                logger.exception("[%s] Could not remove %s", self.host.name, self.staging)
            raise
        finally:
            self.host.remove_tree(self.module.staging_archive)

        self._enter(SourceInstallState.DEREGISTERING)
        try:
            self.builder.remove()
        except SubsystemNotFound:
            logger.debug("[%s] %s was not registered", self.host.name, self.module.registration)

        self._enter(SourceInstallState.COMMITTING)
        self._commit()
        self.result.replaced = True

    def _stage(self) -> None:
        self._enter(SourceInstallState.CLEARING)
        self.host.remove_tree(self.previous, sudo=True)
        self.host.remove_tree(self.staging, sudo=True)
        self.host.make_dir(self.staging, mode=0o755, sudo=True)

        self._enter(SourceInstallState.EXTRACTING)
        self.host.extract_tar(
            self.module.staging_archive,
            self.staging,
            member=self.module.member,
            strip_components=self.module.strip_components,
            sudo=True,
        )

        self._enter(SourceInstallState.STAMPING)
        stamp_descriptor(
            self.host,
            self.staging,
            template=self.module.descriptor_template,
            descriptor=self.module.descriptor,
            field=self.module.version_field,
            version=self.release.version,
        )

        self._enter(SourceInstallState.REVERIFYING)
        expected = self.release.tree_checksum
        algorithm, _digest = parse_checksum(expected)
        actual = self.host.tree_checksum(self.staging, algorithm)
        if not checksum_matches(actual, expected):
            self._enter(SourceInstallState.FATAL)
            raise IntegrityMismatch(
                stage="tree",
                expected=expected,
                actual=f"{algorithm}:{actual}",
                target=self.tree,
            )

    def _commit(self) -> None:
        had_tree = self.host.exists(self.tree)
        if had_tree:
            self.host.rename(self.tree, self.previous, sudo=True)
        self.host.rename(self.staging, self.tree, sudo=True)
        if had_tree:
            self.host.remove_tree(self.previous, sudo=True)
        self.steps.record("module:commit", changed=True, output=self.tree)
        logger.info("[%s] Installed verified source at %s", self.host.name, self.tree)
