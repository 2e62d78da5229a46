"""
Tests for the build context archive service.

Tests cover:
- .dockerignore parsing
- Archive contents (Dockerfile, .dockerignore, exclusions, dotfiles)
- Missing Dockerfile handling

Run with: pytest tests/test_archive_service.py -v
"""
import tarfile

import pytest


def _names(archive):
    with tarfile.open(fileobj=archive, mode="r") as tar:
        return sorted(tar.getnames())


@pytest.fixture
def context_dir(tmp_path):
    """A build context with sources, dotfiles and a nested directory."""
    (tmp_path / "Dockerfile").write_text("FROM ubuntu:18.04\nRUN echo hi\n")
    (tmp_path / "app.py").write_text("print('hi')\n")
    (tmp_path / ".env").write_text("A=1\n")
    (tmp_path / "foo").write_text("ignored\n")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("pass\n")
    (tmp_path / "src" / ".hidden").write_text("x\n")
    return tmp_path


class TestReadIgnorePatterns:
    """Tests for .dockerignore parsing."""

    def test_skips_blank_lines_and_comments(self):
        from devstack.services.docker.archive_service import read_ignore_patterns

        content = "\n# comment\n  node_modules  \n\n*.log\n"

        assert read_ignore_patterns(content) == ["!node_modules", "!*.log"]

    def test_empty_file(self):
        from devstack.services.docker.archive_service import read_ignore_patterns

        assert read_ignore_patterns("") == []


class TestBuildArchive:
    """Tests for build_archive."""

    def test_includes_everything_without_dockerignore(self, context_dir):
        from devstack.services.docker.archive_service import build_archive

        names = _names(build_archive(str(context_dir / "Dockerfile")))

        assert names == sorted([
            ".env", "Dockerfile", "app.py", "foo", "src/.hidden", "src/main.py",
        ])

    def test_dockerignore_excludes_matching_files(self, context_dir):
        from devstack.services.docker.archive_service import build_archive

        (context_dir / ".dockerignore").write_text("foo\n")

        names = _names(build_archive(str(context_dir / "Dockerfile")))

        assert "Dockerfile" in names
        assert ".dockerignore" in names
        assert "foo" not in names
        assert {"app.py", ".env", "src/main.py", "src/.hidden"} <= set(names)

    def test_dockerfile_and_dockerignore_appear_once(self, context_dir):
        from devstack.services.docker.archive_service import build_archive

        (context_dir / ".dockerignore").write_text("Dockerfile\n.dockerignore\n")

        names = _names(build_archive(str(context_dir / "Dockerfile")))

        assert names.count("Dockerfile") == 1
        assert names.count(".dockerignore") == 1

    def test_directory_pattern_excludes_subtree(self, context_dir):
        from devstack.services.docker.archive_service import build_archive

        (context_dir / ".dockerignore").write_text("src\n")

        names = _names(build_archive(str(context_dir / "Dockerfile")))

        assert not any(name.startswith("src/") for name in names)
        assert "app.py" in names

    def test_double_star_pattern(self, context_dir):
        from devstack.services.docker.archive_service import build_archive

        (context_dir / ".dockerignore").write_text("**/.hidden\n")

        names = _names(build_archive(str(context_dir / "Dockerfile")))

        assert "src/.hidden" not in names
        assert ".env" in names

    def test_extra_excludes(self, context_dir):
        from devstack.services.docker.archive_service import build_archive

        names = _names(build_archive(str(context_dir / "Dockerfile"), extra_excludes=["*.py"]))

        assert "app.py" not in names
        assert "src/main.py" not in names
        assert "Dockerfile" in names

    def test_custom_dockerfile_name_is_archived_as_dockerfile(self, context_dir):
        from devstack.services.docker.archive_service import build_archive

        (context_dir / "Dockerfile.dev").write_text("FROM alpine\n")

        archive = build_archive(str(context_dir / "Dockerfile.dev"))
        with tarfile.open(fileobj=archive, mode="r") as tar:
            content = tar.extractfile("Dockerfile").read()

        assert content == b"FROM alpine\n"

    def test_missing_dockerfile(self, tmp_path):
        from devstack.core.exceptions import DockerBuildError
        from devstack.services.docker.archive_service import build_archive

        with pytest.raises(DockerBuildError) as exc_info:
            build_archive(str(tmp_path / "Dockerfile"))

        assert exc_info.value.kind == "cannot_find_dockerfile"

    @pytest.mark.asyncio
    async def test_create_archive_runs_async(self, context_dir):
        from devstack.services.docker.archive_service import create_archive

        archive = await create_archive(str(context_dir / "Dockerfile"))

        assert "Dockerfile" in _names(archive)
