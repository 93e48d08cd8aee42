"""Build Profile Configuration.

This module defines the compile and link flags each build profile contributes.

Design:
    Profiles declare ALL default settings they control explicitly: the
    optimization level, debug info, LTO and stripping, plus any extra
    compile flags. compile_flags and link_flags are derived from those
    settings, and a project can override each setting per profile.

    The system:
    1. Starts from the profile's settings, with project overrides applied
    2. Derives -O<level>, -g, -flto and -s from them
    3. Appends the project's profile flags, warnings and [build] flags
    4. This is declarative - no ad-hoc flag manipulation elsewhere

    The project flags come last, so a project flag such as -O2 still wins
    over the profile's optimization level (the last -O wins with gcc and clang).
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import List, Optional, Sequence


class BuildProfile(Enum):
    """Build profile enum for type-safe profile selection."""

    DEBUG = "debug"
    RELEASE = "release"

    def __str__(self) -> str:
        """Return the string value for directory names and display."""
        return self.value

    @classmethod
    def parse(cls, value: str) -> "BuildProfile":
        """Parse a profile name, accepting "dev" as an alias for debug.

        Raises:
            ValueError: If the name is not a known profile
        """
        normalized = value.strip().lower()
        if normalized == "dev":
            normalized = "debug"
        try:
            return cls(normalized)
        except ValueError:
            raise ValueError(f"Unknown build profile: {value!r} (expected 'debug' or 'release')") from None


@dataclass(frozen=True)
class ProfileFlags:
    """Default build profile settings.

    All fields are mandatory - no defaults.

    Attributes:
        name: Profile identifier (matches BuildProfile enum value)
        description: Human-readable profile description
        opt_level: Optimization level rendered as -O<opt_level>
        debug: Emit debug info (-g)
        lto: Link-time optimization (-flto when compiling and linking)
        strip: Strip symbols from the linked artifact (-s)
        extra_compile_flags: Further compile flags, after the derived ones
    """

    name: str
    description: str
    opt_level: str
    debug: bool
    lto: bool
    strip: bool
    extra_compile_flags: tuple[str, ...]

    @property
    def compile_flags(self) -> tuple[str, ...]:
        flags = [f"-O{self.opt_level}"]
        if self.debug:
            flags.append("-g")
        if self.lto:
            flags.append("-flto")
        return tuple(flags) + self.extra_compile_flags

    @property
    def link_flags(self) -> tuple[str, ...]:
        flags = []
        if self.lto:
            flags.append("-flto")
        if self.strip:
            flags.append("-s")
        return tuple(flags)

    def with_overrides(
        self,
        opt_level: Optional[str] = None,
        debug: Optional[bool] = None,
        lto: Optional[bool] = None,
        strip: Optional[bool] = None,
    ) -> "ProfileFlags":
        """Copy with every non-None setting replaced."""
        changes = {"opt_level": opt_level, "debug": debug, "lto": lto, "strip": strip}
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


# Profile configurations - keyed by BuildProfile enum
PROFILES: dict[BuildProfile, ProfileFlags] = {
    BuildProfile.DEBUG: ProfileFlags(
        name="debug",
        description="Unoptimized build with debug symbols (default)",
        opt_level="0",
        debug=True,
        lto=False,
        strip=False,
        extra_compile_flags=(),
    ),
    BuildProfile.RELEASE: ProfileFlags(
        name="release",
        description="Optimized build without debug symbols",
        opt_level="3",
        debug=False,
        lto=False,
        strip=True,
        extra_compile_flags=("-DNDEBUG",),
    ),
}


def get_profile(profile: BuildProfile) -> ProfileFlags:
    """Get profile configuration by enum.

    Args:
        profile: BuildProfile enum value

    Returns:
        ProfileFlags for the requested profile
    """
    return PROFILES[profile]


def get_compile_flags(
    profile: BuildProfile,
    project_flags: Sequence[str] | None = None,
    profile_flags: ProfileFlags | None = None,
) -> List[str]:
    """Get compilation flags for a profile.

    Profile defaults come first so that project flags can override them.

    Args:
        profile: BuildProfile enum value
        project_flags: Profile-scoped flags, warnings and [build] flags, in order
        profile_flags: Settings to use instead of the profile's defaults

    Returns:
        Ordered list of compile flags
    """
    settings = profile_flags or get_profile(profile)
    return list(settings.compile_flags) + list(project_flags or [])


def get_link_flags(
    profile: BuildProfile,
    project_flags: Sequence[str] | None = None,
    profile_flags: ProfileFlags | None = None,
) -> List[str]:
    """Get linker flags for a profile.

    Args:
        profile: BuildProfile enum value
        project_flags: Extra linker flags from the project
        profile_flags: Settings to use instead of the profile's defaults

    Returns:
        Ordered list of link flags
    """
    settings = profile_flags or get_profile(profile)
    return list(settings.link_flags) + list(project_flags or [])


def format_profile_banner(profile: BuildProfile, compiler: str | None = None) -> str:
    """Format a build profile banner for display.

    Args:
        profile: BuildProfile enum value
        compiler: Compiler name (optional)

    Returns:
        Formatted banner string
    """
    parts = [f"PROFILE={profile.value}"]
    if compiler:
        parts.append(f"COMPILER={compiler}")

    return " ".join(parts)


def print_profile_banner(profile: BuildProfile, compiler: str | None = None) -> None:
    """Print the build profile banner to the console.

    Args:
        profile: BuildProfile enum value
        compiler: Compiler name (optional)
    """
    from ..output import log

    banner = format_profile_banner(profile, compiler=compiler)
    log(banner)
