"""Tests for process name matching."""

import pytest

from procexporter.matcher import MatchPolicy, TargetSpec, matches, normalize_name


class TestNormalizeName:
    """Tests for normalize_name."""

    def test_lower_cases(self):
        """Test names are lower-cased."""
        assert normalize_name("NGINX") == "nginx"

    def test_strips_exe_suffix(self):
        """Test a trailing .exe is removed, in any case."""
        assert normalize_name("Nginx.exe") == "nginx"
        assert normalize_name("SQLSERVR.EXE") == "sqlservr"

    def test_keeps_inner_exe(self):
        """Test only a trailing suffix is stripped."""
        assert normalize_name("my.exe.tool") == "my.exe.tool"

    def test_plain_name_unchanged(self):
        """Test a normalized name is left alone."""
        assert normalize_name("postgres") == "postgres"


class TestTargetSpec:
    """Tests for TargetSpec."""

    def test_from_csv_trims_and_drops_blanks(self):
        """Test comma-separated names are trimmed and empty items dropped."""
        spec = TargetSpec.from_csv(" nginx, mysql ,,  ,redis")

        assert spec.names == ("nginx", "mysql", "redis")
        assert spec.policy is MatchPolicy.SUBSTRING

    def test_from_csv_empty(self):
        """Test an empty list yields an empty spec."""
        spec = TargetSpec.from_csv("", MatchPolicy.NORMALIZED)

        assert spec.is_empty
        assert spec.normalized == frozenset()

    def test_normalized_names_precomputed(self):
        """Test normalized forms are computed once at construction."""
        spec = TargetSpec(("Nginx.EXE", "MySQLd"), MatchPolicy.NORMALIZED)

        assert spec.normalized == frozenset({"nginx", "mysqld"})

    def test_names_coerced_to_tuple(self):
        """Test names given as a list are stored as a tuple."""
        spec = TargetSpec(["nginx"])  # type: ignore[arg-type]

        assert spec.names == ("nginx",)

    def test_is_hashable_and_comparable(self):
        """Test equal specs compare equal and hash the same."""
        first = TargetSpec(("nginx",), MatchPolicy.NORMALIZED)
        second = TargetSpec(("nginx",), MatchPolicy.NORMALIZED)

        assert first == second
        assert hash(first) == hash(second)


class TestSubstringPolicy:
    """Tests for the substring policy."""

    @pytest.mark.parametrize(
        "process_name",
        ["nginx", "nginx: worker process", "openresty-nginx", "mysqld"],
    )
    def test_matches_containing_names(self, process_name):
        """Test a name containing any fragment matches."""
        spec = TargetSpec(("nginx", "mysql"))

        assert matches(process_name, spec)

    def test_case_sensitive(self):
        """Test the substring policy is case-sensitive."""
        spec = TargetSpec(("nginx",))

        assert not matches("NGINX", spec)

    def test_non_matching_name(self):
        """Test unrelated names do not match."""
        spec = TargetSpec(("nginx",))

        assert not matches("postgres", spec)

    def test_empty_targets_match_nothing(self):
        """Test an empty substring spec never matches, even when match-all is set."""
        spec = TargetSpec((), MatchPolicy.SUBSTRING, match_all_when_empty=True)

        assert not matches("nginx", spec)


class TestNormalizedPolicy:
    """Tests for the normalized-equality policy."""

    def test_exe_suffix_and_case_ignored(self):
        """Test 'Nginx.exe' matches the target 'nginx'."""
        spec = TargetSpec(("nginx",), MatchPolicy.NORMALIZED)

        assert matches("Nginx.exe", spec)

    def test_target_is_normalized_too(self):
        """Test targets given with a suffix still match."""
        spec = TargetSpec(("Nginx.exe",), MatchPolicy.NORMALIZED)

        assert matches("nginx", spec)

    def test_requires_exact_equality(self):
        """Test a partial name does not match."""
        spec = TargetSpec(("nginx",), MatchPolicy.NORMALIZED)

        assert not matches("nginx-worker", spec)
        assert not matches("ngin", spec)

    def test_empty_targets_match_all_when_enabled(self):
        """Test an empty normalized spec matches everything when opted in."""
        spec = TargetSpec((), MatchPolicy.NORMALIZED, match_all_when_empty=True)

        assert matches("anything", spec)
        assert matches("Other.exe", spec)

    def test_empty_targets_match_nothing_by_default(self):
        """Test an empty normalized spec matches nothing without the opt-in."""
        spec = TargetSpec((), MatchPolicy.NORMALIZED)

        assert not matches("anything", spec)

    def test_match_all_ignored_when_names_given(self):
        """Test match-all has no effect once names are configured."""
        spec = TargetSpec(("nginx",), MatchPolicy.NORMALIZED, match_all_when_empty=True)

        assert not matches("postgres", spec)
