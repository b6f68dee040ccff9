"""
Tests for input sanitization, the deletion gate and remote path layout.
"""

from datetime import datetime

import pytest

from namdrunner.core.exceptions import ValidationError
from namdrunner.core.paths import (
    JobPaths,
    ensure_trailing_slash,
    generate_job_id,
    input_file_reference,
    slurm_log_paths,
)
from namdrunner.core.validation import (
    sanitize_job_id,
    sanitize_job_name,
    sanitize_username,
    validate_deletion_path,
    validate_relative_file_path,
    validate_remote_path,
)


class TestSanitizeJobId:
    """Test job id validation."""

    @pytest.mark.parametrize(
        "job_id", ["alpha", "job_001", "a-b_c", "X" * 64, "alpha_20250101_120000_123456"]
    )
    def test_valid_ids_unchanged(self, job_id):
        assert sanitize_job_id(job_id) == job_id

    @pytest.mark.parametrize(
        "job_id",
        [
            "",
            "..",
            "a..b",
            "../etc",
            "a/b",
            "/abs",
            "a\x00b",
            "café",
            "a;rm -rf",
            "a b",
            "a$b",
            "X" * 65,
        ],
    )
    def test_invalid_ids_rejected(self, job_id):
        with pytest.raises(ValidationError):
            sanitize_job_id(job_id)


class TestSanitizeUsername:
    """Test username validation."""

    def test_allows_dots(self):
        assert sanitize_username("j.doe") == "j.doe"

    @pytest.mark.parametrize("username", ["", "a;b", "a|b", "a`b", "../x", "user name", "üser"])
    def test_rejects_bad_usernames(self, username):
        with pytest.raises(ValidationError):
            sanitize_username(username)


class TestSanitizeJobName:
    """Test display-name to id-stem conversion."""

    def test_spaces_become_underscores(self):
        assert sanitize_job_name("My Protein Run!") == "My_Protein_Run"

    def test_plain_name_unchanged(self):
        assert sanitize_job_name("alpha") == "alpha"

    @pytest.mark.parametrize("name", ["", "   ", "!!!", "a\x00b"])
    def test_rejects_unusable_names(self, name):
        with pytest.raises(ValidationError):
            sanitize_job_name(name)


class TestValidateRemotePath:
    """Test general remote path checks."""

    def test_absolute_path_ok(self):
        assert validate_remote_path("/projects/u/namdrunner_jobs/a") == "/projects/u/namdrunner_jobs/a"

    @pytest.mark.parametrize(
        "path", ["", "relative/path", "/a/../b", "/a/b;ls", "/a/$(id)", "/a\x00b", "/a/`x`"]
    )
    def test_rejects_unsafe_paths(self, path):
        with pytest.raises(ValidationError):
            validate_remote_path(path)


class TestValidateRelativeFilePath:
    """Test paths joined under a job directory."""

    def test_plain_paths(self):
        assert validate_relative_file_path("outputs/traj.dcd") == "outputs/traj.dcd"
        assert validate_relative_file_path("alpha_99.out") == "alpha_99.out"
        assert validate_relative_file_path("outputs/") == "outputs"

    @pytest.mark.parametrize(
        "path", ["", "   ", "/etc/passwd", "../x", "outputs/../../x", "..", "a\\b", "a\x00b"]
    )
    def test_rejects_escaping_paths(self, path):
        with pytest.raises(ValidationError):
            validate_relative_file_path(path)


class TestValidateDeletionPath:
    """Test the recursive-delete safety gate."""

    def test_accepts_job_directory(self):
        path = "/projects/testuser/namdrunner_jobs/alpha"
        assert validate_deletion_path(path) == path

    def test_strips_trailing_slash(self):
        assert (
            validate_deletion_path("/scratch/alpine/u/namdrunner_jobs/alpha/")
            == "/scratch/alpine/u/namdrunner_jobs/alpha"
        )

    @pytest.mark.parametrize(
        "path",
        [
            "",
            "/",
            "//",
            "/etc",
            "/etc/namdrunner_jobs/x",
            "/usr/local/namdrunner_jobs/x",
            "/root/namdrunner_jobs/x",
            "/var/tmp/namdrunner_jobs/x",
            "/home/user/jobs/alpha",
            "/projects/u/namdrunner_jobs",
            "/projects/u/namdrunner_jobs/",
            "/projects/u/namdrunner_jobs/../other",
            "/projects/u/namdrunner_jobs/a..b",
            "/projects/u/my_namdrunner_jobs_dir/alpha",
        ],
    )
    def test_rejects_unsafe_deletions(self, path):
        with pytest.raises(ValidationError):
            validate_deletion_path(path)


class TestJobPaths:
    """Test remote directory layout."""

    def test_layout(self):
        paths = JobPaths("testuser", "alpha_1")
        assert paths.project_dir == "/projects/testuser/namdrunner_jobs/alpha_1"
        assert paths.scratch_dir == "/scratch/alpine/testuser/namdrunner_jobs/alpha_1"
        assert paths.project_subdirectories() == [
            "/projects/testuser/namdrunner_jobs/alpha_1/input_files",
            "/projects/testuser/namdrunner_jobs/alpha_1/scripts",
            "/projects/testuser/namdrunner_jobs/alpha_1/outputs",
        ]

    def test_custom_bases(self):
        paths = JobPaths("u", "j", project_base="/data/proj/", scratch_base="/fast/")
        assert paths.project_dir == "/data/proj/u/namdrunner_jobs/j"
        assert paths.scratch_dir == "/fast/u/namdrunner_jobs/j"

    def test_rejects_bad_components(self):
        with pytest.raises(ValidationError):
            JobPaths("../root", "alpha")
        with pytest.raises(ValidationError):
            JobPaths("testuser", "a/b")

    def test_log_paths(self):
        out, err = slurm_log_paths("/p/namdrunner_jobs/j", "alpha", "99")
        assert out == "/p/namdrunner_jobs/j/alpha_99.out"
        assert err == "/p/namdrunner_jobs/j/alpha_99.err"

    def test_helpers(self):
        assert ensure_trailing_slash("/a/b") == "/a/b/"
        assert ensure_trailing_slash("/a/b/") == "/a/b/"
        assert input_file_reference("x.pdb") == "input_files/x.pdb"


class TestGenerateJobId:
    """Test job id generation."""

    def test_format(self):
        job_id = generate_job_id("My Run", now=datetime(2025, 1, 2, 3, 4, 5, 678901))
        assert job_id == "My_Run_20250102_030405_678901"

    def test_long_names_are_truncated(self):
        job_id = generate_job_id("x" * 200, now=datetime(2025, 1, 2, 3, 4, 5, 6))
        assert len(job_id) <= 64
        assert job_id.endswith("_20250102_030405_000006")
        assert sanitize_job_id(job_id) == job_id

    def test_distinct_timestamps_give_distinct_ids(self):
        a = generate_job_id("alpha", now=datetime(2025, 1, 1, 0, 0, 0, 1))
        b = generate_job_id("alpha", now=datetime(2025, 1, 1, 0, 0, 0, 2))
        assert a != b
