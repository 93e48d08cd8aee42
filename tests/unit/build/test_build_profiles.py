"""Tests for build profile flags."""

import pytest

from zora.build.build_profiles import (
    BuildProfile,
    format_profile_banner,
    get_compile_flags,
    get_link_flags,
    get_profile,
)


class TestBuildProfile:
    def test_parse_names(self):
        assert BuildProfile.parse("debug") == BuildProfile.DEBUG
        assert BuildProfile.parse("Release") == BuildProfile.RELEASE

    def test_dev_alias(self):
        assert BuildProfile.parse("dev") == BuildProfile.DEBUG

    def test_unknown_profile(self):
        with pytest.raises(ValueError, match="Unknown build profile"):
            BuildProfile.parse("fast")

    def test_str_is_value(self):
        assert str(BuildProfile.RELEASE) == "release"


class TestProfileFlags:
    def test_debug_flags(self):
        assert get_compile_flags(BuildProfile.DEBUG) == ["-O0", "-g"]
        assert get_link_flags(BuildProfile.DEBUG) == []

    def test_release_flags(self):
        assert get_compile_flags(BuildProfile.RELEASE) == ["-O3", "-DNDEBUG"]
        assert get_link_flags(BuildProfile.RELEASE) == ["-s"]

    def test_project_flags_follow_profile_defaults(self):
        flags = get_compile_flags(BuildProfile.RELEASE, ["-O2", "-Wall"])
        assert flags == ["-O3", "-DNDEBUG", "-O2", "-Wall"]
        assert flags.index("-O2") > flags.index("-O3")

    def test_overrides_rederive_flags(self):
        settings = get_profile(BuildProfile.RELEASE).with_overrides(opt_level="2", debug=True, lto=True, strip=False)

        assert get_compile_flags(BuildProfile.RELEASE, profile_flags=settings) == ["-O2", "-g", "-flto", "-DNDEBUG"]
        assert get_link_flags(BuildProfile.RELEASE, profile_flags=settings) == ["-flto"]

    def test_none_overrides_keep_defaults(self):
        settings = get_profile(BuildProfile.DEBUG).with_overrides()
        assert settings == get_profile(BuildProfile.DEBUG)

    def test_profiles_are_frozen(self):
        with pytest.raises(AttributeError):
            get_profile(BuildProfile.DEBUG).name = "other"  # type: ignore[misc]

    def test_banner(self):
        assert format_profile_banner(BuildProfile.RELEASE, compiler="cc") == "PROFILE=release COMPILER=cc"
