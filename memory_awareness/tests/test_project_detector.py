"""Tests for project context detection."""

import json

import pytest

from ..project_detector import detect_frameworks, detect_language, detect_project_context, repo_name_from_url


class TestDetectLanguage:
    """Tests for extension-based language detection."""

    def test_most_common_extension_wins(self, tmp_path):
        for name in ("a.py", "b.py", "c.py", "index.js"):
            (tmp_path / name).write_text("")
        info = detect_language(str(tmp_path))
        assert info.primary == "Python"
        assert info.extensions[".py"] == 3

    def test_missing_directory(self, tmp_path):
        assert detect_language(str(tmp_path / "missing")).primary == "Unknown"


class TestDetectFrameworks:
    """Tests for config-file detection."""

    def test_pyproject(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text(
            '[project]\nname = "demo-app"\ndependencies = ["fastapi"]\n\n[tool.pytest.ini_options]\n'
        )
        frameworks, tools, name = detect_frameworks(str(tmp_path))
        assert frameworks == ["FastAPI"]
        assert tools == ["Python", "pytest"]
        assert name == "demo-app"

    def test_poetry_tables(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text(
            '[tool.poetry]\nname = "poetry-app"\n\n[tool.poetry.dependencies]\npython = "^3.11"\nDjango = "^5.0"\n\n'
            '[tool.poetry.group.dev.dependencies]\npytest = "^8.0"\n'
        )
        frameworks, tools, name = detect_frameworks(str(tmp_path))
        assert frameworks == ["Django"]
        assert tools == ["Python", "pytest", "Poetry"]
        assert name == "poetry-app"

    def test_name_outside_project_table_is_ignored(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text(
            '[tool.mypkg]\nname = "not-the-project"\nnotes = "flask and pytest mentioned here"\n'
        )
        frameworks, tools, name = detect_frameworks(str(tmp_path))
        assert frameworks == []
        assert tools == ["Python"]
        assert name == "python-project"

    def test_cargo(self, tmp_path):
        (tmp_path / "Cargo.toml").write_text(
            '[package]\nname = "crab"\n\n[dependencies]\ntokio = { version = "1", features = ["full"] }\n'
            'serde = "1"\n\n[dev-dependencies]\nwarp = "0.3"\n'
        )
        frameworks, tools, name = detect_frameworks(str(tmp_path))
        assert frameworks == ["Warp", "Tokio"]
        assert tools == ["Cargo"]
        assert name == "crab"

    def test_invalid_toml_is_skipped(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text("[project\nname = ")
        frameworks, tools, name = detect_frameworks(str(tmp_path))
        assert tools == ["Python"]
        assert name is None

    def test_package_json(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"name": "web", "dependencies": {"react": "18"}}))
        frameworks, tools, name = detect_frameworks(str(tmp_path))
        assert frameworks == ["React"]
        assert tools == ["npm"]
        assert name == "web"

    def test_unparseable_file_is_skipped(self, tmp_path):
        (tmp_path / "package.json").write_text("{broken")
        (tmp_path / "Dockerfile").write_text("FROM python")
        frameworks, tools, name = detect_frameworks(str(tmp_path))
        assert tools == ["Docker"]
        assert name is None


class TestDetectProjectContext:
    """Tests for the aggregated project context."""

    def test_name_falls_back_to_directory(self, tmp_path):
        project_dir = tmp_path / "my-service"
        project_dir.mkdir()
        (project_dir / "main.go").write_text("package main")

        context = detect_project_context(str(project_dir))

        assert context.name == "my-service"
        assert context.language == "Go"
        assert context.git.is_repo is False
        assert context.confidence == 0.5

    def test_frameworks_raise_confidence(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text('[tool.poetry]\nname = "svc"\n\n[tool.poetry.dependencies]\nflask = "^3.0"\n')
        context = detect_project_context(str(tmp_path))
        assert context.name == "svc"
        assert context.frameworks == ["Flask"]
        assert context.confidence == pytest.approx(0.7)

    def test_repo_name_from_url(self):
        assert repo_name_from_url("git@github.com:org/repo.git") == "repo"
        assert repo_name_from_url("https://github.com/org/tool/") == "tool"
