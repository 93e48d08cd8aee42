"""project.toml loader.

Reads the project manifest into an immutable, validated Project value. The
build engine never touches the manifest itself; it only reads Project.

Example manifest:

    name = "hello"
    version = "0.1.0"
    type = "exec"            # exec | static | shared ("lib" == static)
    language = "c"           # c | cpp
    std = "c11"
    default_features = ["logging"]

    [sources]
    dirs = ["src"]
    exclude = ["src/experimental/*"]

    [includes]
    dirs = ["include"]

    [build]
    flags = ["-fno-common"]
    warnings = ["all", "extra"]
    optimization = "2"
    defines = { VERSION = "\\"1.0\\"" }
    libs = ["m"]
    lib_dirs = []

    [features]
    logging = []
    simd = []

    [profile.release]
    opt_level = "3"
    lto = true
    flags = ["-march=native"]
    defines = { FAST = "1" }

Flags are applied as [profile.<name>] flags, then warnings, then [build]
flags. [build] defines override profile defines of the same name, and each
enabled feature adds FEATURE_<NAME>=1.
"""

import logging
import tomllib
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence

from ..errors import ConfigurationError
from .paths import MANIFEST_NAME

logger = logging.getLogger(__name__)


class TargetKind(Enum):
    """What the link step produces."""

    EXECUTABLE = "executable"
    STATIC_LIBRARY = "static-library"
    SHARED_LIBRARY = "shared-library"

    def __str__(self) -> str:
        return self.value

    @property
    def is_library(self) -> bool:
        return self is not TargetKind.EXECUTABLE


_KIND_ALIASES: dict[str, TargetKind] = {
    "exec": TargetKind.EXECUTABLE,
    "executable": TargetKind.EXECUTABLE,
    "bin": TargetKind.EXECUTABLE,
    "lib": TargetKind.STATIC_LIBRARY,
    "library": TargetKind.STATIC_LIBRARY,
    "static": TargetKind.STATIC_LIBRARY,
    "staticlib": TargetKind.STATIC_LIBRARY,
    "static-library": TargetKind.STATIC_LIBRARY,
    "shared": TargetKind.SHARED_LIBRARY,
    "sharedlib": TargetKind.SHARED_LIBRARY,
    "dylib": TargetKind.SHARED_LIBRARY,
    "shared-library": TargetKind.SHARED_LIBRARY,
}

# "dev" is the manifest's historical name for the debug profile
_PROFILE_ALIASES = {"dev": "debug", "debug": "debug", "release": "release"}


@dataclass(frozen=True)
class ProfileOverrides:
    """Profile-scoped settings from [profile.<name>].

    None means "keep the profile's default" for the four settings.
    """

    flags: tuple[str, ...] = ()
    defines: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    opt_level: Optional[str] = None
    debug: Optional[bool] = None
    lto: Optional[bool] = None
    strip: Optional[bool] = None


@dataclass(frozen=True)
class FeatureSelection:
    """Which features one invocation enables (--features and friends)."""

    requested: tuple[str, ...] = ()
    all_features: bool = False
    no_default_features: bool = False


def feature_define(feature: str) -> str:
    """Define name for an enabled feature: "fast-math" -> "FEATURE_FAST_MATH"."""
    return "FEATURE_" + feature.upper().replace("-", "_")


@dataclass(frozen=True)
class Project:
    """Validated project configuration.

    Attributes:
        name: Project (and artifact) name
        kind: Target kind the link step produces
        flags: Extra compile flags, applied in order to every profile
        defines: Preprocessor defines (NAME -> VALUE, empty VALUE means bare -DNAME)
        version: Project version string
        language: "c" or "cpp"
        std: Language standard (e.g. "c11", "c++17"), empty for compiler default
        source_dirs: Directories scanned for translation units
        include_dirs: Project include directories, in search order
        exclude: Glob patterns (relative to the project root) skipped by the scanner
        libs: Libraries passed to the linker as -l<name>
        lib_dirs: Library search directories passed as -L<dir>
        profiles: Profile-scoped overrides keyed by "debug"/"release"
        warnings: Warning names, passed as -W<name> ("all" -> -Wall)
        optimization: Project-wide optimization level used when a profile sets no opt_level
        features: Declared features and what each one lists
        default_features: Features enabled unless --no-default-features
    """

    name: str
    kind: TargetKind
    flags: tuple[str, ...] = ()
    defines: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    version: str = "0.1.0"
    language: str = "c"
    std: str = ""
    source_dirs: tuple[str, ...] = ("src",)
    include_dirs: tuple[str, ...] = ("include",)
    exclude: tuple[str, ...] = ()
    libs: tuple[str, ...] = ()
    lib_dirs: tuple[str, ...] = ()
    profiles: Mapping[str, ProfileOverrides] = field(default_factory=lambda: MappingProxyType({}))
    warnings: tuple[str, ...] = ()
    optimization: Optional[str] = None
    features: Mapping[str, tuple[str, ...]] = field(default_factory=lambda: MappingProxyType({}))
    default_features: tuple[str, ...] = ()

    @property
    def is_cpp(self) -> bool:
        return self.language == "cpp"

    def overrides_for(self, profile: str) -> ProfileOverrides:
        return self.profiles.get(profile, ProfileOverrides())

    def warning_flags(self) -> tuple[str, ...]:
        return tuple(w if w.startswith("-") else f"-W{w}" for w in self.warnings)

    def effective_flags(self, profile: str) -> tuple[str, ...]:
        """Profile flags, then warning flags, then [build] flags."""
        return self.overrides_for(profile).flags + self.warning_flags() + self.flags

    def effective_defines(self, profile: str, features: Sequence[str] = ()) -> dict[str, str]:
        """Profile defines overridden by [build] defines, plus one define per enabled feature."""
        merged = dict(self.overrides_for(profile).defines)
        merged.update(self.defines)
        for feature in features:
            merged[feature_define(feature)] = "1"
        return merged

    def enabled_features(self, selection: Optional[FeatureSelection] = None) -> tuple[str, ...]:
        """Resolve a FeatureSelection against the manifest, sorted.

        Raises:
            ConfigurationError: If a requested feature is not declared
        """
        selection = selection or FeatureSelection()
        known = set(self.features) | set(self.default_features)
        unknown = sorted(set(selection.requested) - known)
        if unknown:
            raise ConfigurationError(f"unknown feature(s): {', '.join(unknown)}")

        enabled: set[str] = set()
        if not selection.no_default_features:
            enabled.update(self.default_features)
        if selection.all_features:
            enabled.update(self.features)
        enabled.update(selection.requested)
        return tuple(sorted(enabled))


def _string_list(data: Mapping[str, Any], key: str, where: str, default: tuple[str, ...] = ()) -> tuple[str, ...]:
    value = data.get(key)
    if value is None:
        return default
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigurationError(f"{where}.{key} must be a list of strings")
    return tuple(value)


def _define_table(data: Mapping[str, Any], where: str) -> Mapping[str, str]:
    value = data.get("defines")
    if value is None:
        return MappingProxyType({})
    if not isinstance(value, dict):
        raise ConfigurationError(f"{where}.defines must be a table")
    defines: dict[str, str] = {}
    for name, raw in value.items():
        if isinstance(raw, bool):
            defines[name] = "1" if raw else "0"
        elif isinstance(raw, (str, int, float)):
            defines[name] = str(raw)
        else:
            raise ConfigurationError(f"{where}.defines.{name} must be a string, number or boolean")
    return MappingProxyType(defines)


_OPT_LEVELS = frozenset({"0", "1", "2", "3", "s", "z", "g", "fast"})


def _opt_level(data: Mapping[str, Any], key: str, where: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    level = str(value).strip().removeprefix("-O")
    if isinstance(value, bool) or level not in _OPT_LEVELS:
        raise ConfigurationError(f"{where}.{key} must be one of {', '.join(sorted(_OPT_LEVELS))}")
    return level


def _optional_bool(data: Mapping[str, Any], key: str, where: str) -> Optional[bool]:
    value = data.get(key)
    if value is not None and not isinstance(value, bool):
        raise ConfigurationError(f"{where}.{key} must be true or false")
    return value


def _feature_table(data: Mapping[str, Any]) -> Mapping[str, tuple[str, ...]]:
    table = _table(data, "features")
    features: dict[str, tuple[str, ...]] = {}
    for name in table:
        features[name] = _string_list(table, name, "features")
    return MappingProxyType(features)


def _table(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ConfigurationError(f"[{key}] must be a table")
    return value


def parse_project(data: Mapping[str, Any]) -> Project:
    """Validate a decoded manifest and build a Project.

    Raises:
        ConfigurationError: If a required field is missing or has the wrong type
    """
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError("project.toml: 'name' is required")
    if "/" in name or "\\" in name:
        raise ConfigurationError(f"project.toml: invalid project name {name!r}")

    raw_kind = str(data.get("type", "exec")).lower()
    kind = _KIND_ALIASES.get(raw_kind)
    if kind is None:
        raise ConfigurationError(f"project.toml: unknown project type {raw_kind!r}")

    language = str(data.get("language", "c") or "c").lower()
    if language in ("c++", "cxx", "cpp"):
        language = "cpp"
    elif language != "c":
        raise ConfigurationError(f"project.toml: unsupported language {language!r}")

    sources = _table(data, "sources")
    includes = _table(data, "includes")
    build = _table(data, "build")

    profiles: dict[str, ProfileOverrides] = {}
    for raw_name, section in _table(data, "profile").items():
        profile_name = _PROFILE_ALIASES.get(raw_name)
        if profile_name is None:
            logger.warning(f"Ignoring unknown profile section [profile.{raw_name}]")
            continue
        if not isinstance(section, dict):
            raise ConfigurationError(f"[profile.{raw_name}] must be a table")
        profiles[profile_name] = ProfileOverrides(
            flags=_string_list(section, "flags", f"profile.{raw_name}"),
            defines=_define_table(section, f"profile.{raw_name}"),
            opt_level=_opt_level(section, "opt_level", f"profile.{raw_name}"),
            debug=_optional_bool(section, "debug", f"profile.{raw_name}"),
            lto=_optional_bool(section, "lto", f"profile.{raw_name}"),
            strip=_optional_bool(section, "strip", f"profile.{raw_name}"),
        )

    return Project(
        name=name,
        kind=kind,
        flags=_string_list(build, "flags", "build"),
        defines=_define_table(build, "build"),
        version=str(data.get("version", "0.1.0")),
        language=language,
        std=str(data.get("std", "") or ""),
        source_dirs=_string_list(sources, "dirs", "sources", default=("src",)),
        include_dirs=_string_list(includes, "dirs", "includes", default=("include",)),
        exclude=_string_list(sources, "exclude", "sources"),
        libs=_string_list(build, "libs", "build"),
        lib_dirs=_string_list(build, "lib_dirs", "build"),
        profiles=MappingProxyType(profiles),
        warnings=_string_list(build, "warnings", "build"),
        optimization=_opt_level(build, "optimization", "build"),
        features=_feature_table(data),
        default_features=_string_list(data, "default_features", "project"),
    )


def load_project(project_dir: Path) -> Project:
    """Load and validate <project_dir>/project.toml.

    Raises:
        ConfigurationError: If the manifest is missing, unreadable or invalid
    """
    manifest = project_dir / MANIFEST_NAME
    if not manifest.is_file():
        raise ConfigurationError(f"{MANIFEST_NAME} not found in {project_dir}")

    try:
        with open(manifest, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"failed to parse {manifest}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"failed to read {manifest}: {e}") from e

    project = parse_project(data)
    logger.debug(f"Loaded project {project.name} ({project.kind}) from {manifest}")
    return project
