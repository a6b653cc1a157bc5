"""
Host release classification.

SSLv3 toggling is only supported from ESXi 5.0 P13 / 5.1 P09 / 5.5 U3b (P07)
onwards; anything else is reported as unsupported unless the operator bypasses
the check.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional, Tuple

from collaborators import CommandChannel
from errors import ConnectivityError, VersionParseError, VersionUnsupported
from models import HostVariant

logger = logging.getLogger(__name__)

VERSION_QUERY_COMMAND = "esxcli system version get"
SEGMENT_WIDTH = 3


@dataclass(frozen=True)
class ReleaseBaseline:
    """Minimum release/update/build supporting protocol reconfiguration."""

    release: str
    min_update: int
    min_build: int
    variant: HostVariant


BASELINES: Tuple[ReleaseBaseline, ...] = (
    ReleaseBaseline("5.5.0", 3, 3248547, HostVariant.BASELINE),  # 5.5 U3b (P07)
    ReleaseBaseline("5.1.0", 3, 3872664, HostVariant.LEGACY_A),  # ESXi510-201605001 (P09)
    ReleaseBaseline("5.0.0", 3, 3982828, HostVariant.LEGACY_B),  # ESXi500-201606001 (P13)
)


def normalize_version(version: str, width: int = SEGMENT_WIDTH) -> str:
    """Pad each dot-separated segment to `width` so string order is numeric order."""
    return "".join(segment.rjust(width) for segment in version.split("."))


def compare_versions(current: str, supported: str) -> int:
    """Return <0, 0 or >0 as `current` is lower than, equal to or higher than `supported`."""
    a = normalize_version(current)
    b = normalize_version(supported)
    return (a > b) - (a < b)


def _parse_int(value: str) -> Optional[int]:
    match = re.search(r"\d+", value)
    return int(match.group()) if match else None


def parse_version_output(output: str) -> Tuple[Optional[str], Optional[int], Optional[int]]:
    """
    Extract (release, update, build) from `esxcli system version get` output.

    Lines look like "   Version: 5.5.0" or "   Build: Releasebuild-3248547".
    Missing or garbled values come back as None.
    """
    release = update = build = None
    for line in output.splitlines():
        info = re.sub(r"\s+", "", line).lower()
        key, sep, value = info.partition(":")
        if not sep:
            continue
        if "version" in key:
            release = value or None
        elif "build" in key:
            build = _parse_int(value.replace("releasebuild-", ""))
        elif "update" in key:
            update = _parse_int(value)
    return release, update, build


@dataclass
class VersionInfo:
    """Parsed host version and its classification."""

    release: str
    update: Optional[int]
    build: Optional[int]
    variant: HostVariant
    family: Optional[ReleaseBaseline] = None

    @property
    def supported(self) -> bool:
        return self.variant != HostVariant.UNSUPPORTED

    def __str__(self) -> str:
        return f"{self.release}, Update-{self.update} Build-{self.build}"


def evaluate(release: str, update: Optional[int], build: Optional[int]) -> VersionInfo:
    """Classify a parsed version against the known baselines."""
    family = next(
        (b for b in BASELINES if compare_versions(release, b.release) == 0), None
    )
    variant = HostVariant.UNSUPPORTED
    if (
        family is not None
        and update is not None
        and build is not None
        and update >= family.min_update
        and build >= family.min_build
    ):
        variant = family.variant
    return VersionInfo(release, update, build, variant, family)


class VersionGate:
    """Decides whether a host may be reconfigured and which variant it is."""

    def __init__(self, bypass: bool = False):
        self.bypass = bypass

    def classify(self, channel: CommandChannel) -> VersionInfo:
        """
        Query and classify the host version.

        Raises:
            ConnectivityError: If the version query cannot run
            VersionParseError: If the output has no release line
        """
        result = channel.run_sync(VERSION_QUERY_COMMAND)
        if not result.ok:
            raise ConnectivityError(
                f"Version query failed (exit {result.exit_status}): {result.stderr.strip()}"
            )
        release, update, build = parse_version_output(result.stdout)
        if not release:
            raise VersionParseError(
                f"Could not parse host version from: {result.stdout.strip()[:200]!r}"
            )
        return evaluate(release, update, build)

    def resolve(self, channel: CommandChannel, host_name: str) -> HostVariant:
        """
        Return the variant to reconfigure a host as.

        With bypass set, an unsupported or unparsable version is logged and the
        host proceeds as its release family (BASELINE when the family is unknown).

        Raises:
            VersionUnsupported: Host is not supported and bypass is not set
            ConnectivityError: If the version query cannot run
        """
        try:
            info = self.classify(channel)
        except VersionParseError as e:
            if not self.bypass:
                raise
            logger.warning(
                f"Version check for {host_name} failed ({e}); continuing because the check is bypassed"
            )
            return HostVariant.BASELINE

        if info.supported:
            logger.info(
                f"This ESXi host ({info}) is supported for SSL security protocol configuration"
            )
            return info.variant

        if info.family is not None:
            hint = (
                f"supported from version {info.family.release} Update-"
                f"{info.family.min_update} Build-{info.family.min_build}"
            )
        else:
            hint = "supported on 5.0P13 / 5.1P09 / 5.5P07 and onwards"

        if self.bypass:
            logger.warning(
                f"Host {host_name} ({info}) is NOT supported ({hint}); "
                "continuing because the version check is bypassed"
            )
            return info.family.variant if info.family else HostVariant.BASELINE

        logger.error(f"Host {host_name} ({info}) is NOT supported ({hint})")
        logger.error(
            "If the build number is higher, check whether it is a hot patch built on "
            "a release where protocol configuration was not supported"
        )
        raise VersionUnsupported(f"Host version {info} is not supported ({hint})")
