"""Build Context - Aggregated build configuration.

This module defines:
- BuildContext: Everything one scheduler run needs, resolved up front

Design:
    The orchestrator resolves the project, profile and toolchain into a
    BuildContext once per invocation. The context carries pre-resolved
    compile and link signatures, so the scheduler and the fingerprint cache
    never look at the manifest or the environment themselves.
"""

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Optional, Sequence

from ..config.paths import (
    executable_suffix,
    get_object_dir,
    get_target_root,
    shared_library_suffix,
)
from ..config.project_config import Project, TargetKind
from .build_profiles import BuildProfile, ProfileFlags, get_compile_flags, get_link_flags, get_profile
from .models import CompileSignature, LinkSignature, SourceFile


def artifact_file_name(project: Project, platform: Optional[str] = None) -> str:
    """File name of the final artifact for the project's target kind."""
    if project.kind == TargetKind.EXECUTABLE:
        return f"{project.name}{executable_suffix(platform)}"
    if project.kind == TargetKind.STATIC_LIBRARY:
        return f"lib{project.name}.a"
    return f"lib{project.name}{shared_library_suffix(platform)}"


def resolve_profile(profile: BuildProfile, project: Project) -> ProfileFlags:
    """Profile defaults with [profile.<name>] settings applied.

    [build] optimization fills in when the profile section sets no opt_level.
    """
    overrides = project.overrides_for(profile.value)
    return get_profile(profile).with_overrides(
        opt_level=overrides.opt_level or project.optimization,
        debug=overrides.debug,
        lto=overrides.lto,
        strip=overrides.strip,
    )


@dataclass(frozen=True)
class BuildContext:
    """Resolved inputs for one build invocation.

    Attributes:
        project_dir: Project root directory containing project.toml
        project: Validated project configuration
        profile: Build profile enum value
        profile_flags: Profile settings with the project's overrides applied
        features: Enabled features, sorted
        signature: Compile signature shared by every unit
        link_signature: Inputs to the link/archive step
        object_dir: Where object files go (.build/<profile>/obj)
        artifact_path: Final executable or library path
        job_limit: Maximum concurrent compiles
        verbose: Whether to print literal command lines
    """

    project_dir: Path
    project: Project
    profile: BuildProfile
    profile_flags: ProfileFlags
    signature: CompileSignature
    link_signature: LinkSignature
    object_dir: Path
    artifact_path: Path
    job_limit: int
    verbose: bool = False
    features: tuple[str, ...] = ()

    @classmethod
    def create(
        cls,
        project_dir: Path,
        project: Project,
        profile: BuildProfile,
        c_compiler: str,
        cxx_compiler: str,
        job_limit: int,
        use_cxx: bool = False,
        verbose: bool = False,
        platform: Optional[str] = None,
        features: Sequence[str] = (),
    ) -> "BuildContext":
        """Create a BuildContext with resolved flags and signatures."""
        name = profile.value
        profile_flags = resolve_profile(profile, project)
        defines = project.effective_defines(name, features)
        signature = CompileSignature(
            c_compiler=c_compiler,
            cxx_compiler=cxx_compiler,
            flags=tuple(get_compile_flags(profile, project.effective_flags(name), profile_flags)),
            defines=tuple(sorted(defines.items())),
            include_dirs=tuple(project.include_dirs),
            profile=name,
            kind=project.kind.value,
            language=project.language,
            std=project.std,
        )
        link_signature = LinkSignature(
            flags=tuple(get_link_flags(profile, profile_flags=profile_flags)),
            libs=tuple(project.libs),
            lib_dirs=tuple(project.lib_dirs),
            use_cxx=use_cxx or project.is_cpp,
        )
        return cls(
            project_dir=project_dir,
            project=project,
            profile=profile,
            profile_flags=profile_flags,
            signature=signature,
            link_signature=link_signature,
            object_dir=get_object_dir(project_dir, name),
            artifact_path=get_target_root(project_dir) / name / artifact_file_name(project, platform),
            job_limit=max(1, job_limit),
            verbose=verbose,
            features=tuple(sorted(features)),
        )

    def object_path(self, unit: SourceFile) -> Path:
        """Object file for a unit: <object_dir>/<unit path>.o"""
        return self.object_dir.joinpath(*PurePosixPath(unit.path + ".o").parts)
