import json

from dotenvx_deploy.models import Project
from dotenvx_deploy.project import (
    detect_project,
    ensure_vercelignore,
    get_project_name,
    ignore_status,
    is_dotenvx_installed,
    patch_gitignore,
    patch_scripts,
    scripts_to_add,
)


def create_manifest(tmp_path, data):
    file_path = tmp_path / "package.json"
    file_path.write_text(json.dumps(data))
    return file_path


def test_detect_nextjs(tmp_path):
    create_manifest(tmp_path, {"name": "my-app", "dependencies": {"next": "14.0.0", "react": "18"}})
    project = detect_project(str(tmp_path))
    assert project.type == "nextjs"
    assert project.framework == "Next.js"
    assert project.version == "14.0.0"
    assert project.name == "my-app"


def test_detect_vite_variant_from_dev_dependencies(tmp_path):
    create_manifest(tmp_path, {"devDependencies": {"vite": "^5.0.0", "@vitejs/plugin-react-swc": "3"}})
    project = detect_project(str(tmp_path))
    assert project.type == "vite"
    assert project.framework == "Vite + React"
    assert project.name is None


def test_detect_unknown(tmp_path):
    create_manifest(tmp_path, {"name": "lib", "dependencies": {"express": "4"}})
    project = detect_project(str(tmp_path))
    assert project.type == "unknown"
    assert project.name == "lib"


def test_detect_without_manifest(tmp_path):
    assert detect_project(str(tmp_path)).type == "unknown"
    assert get_project_name(str(tmp_path)) is None


def test_detect_with_invalid_manifest(tmp_path):
    (tmp_path / "package.json").write_text("{not json")
    assert detect_project(str(tmp_path)).type == "unknown"
    assert is_dotenvx_installed(str(tmp_path)) is False


def test_is_dotenvx_installed(tmp_path):
    create_manifest(tmp_path, {"dependencies": {"@dotenvx/dotenvx": "^1.0.0"}})
    assert is_dotenvx_installed(str(tmp_path)) is True


def test_scripts_to_add_wraps_existing_and_fills_missing():
    project = Project(type="nextjs", framework="Next.js")
    to_add = scripts_to_add(project, {"dev": "next dev --turbo", "build": "dotenvx run -- next build"})
    assert to_add == {
        "dotenvx": "dotenvx",
        "dev": "dotenvx run -- next dev --turbo",
        "start": "dotenvx run -- next start",
    }


def test_patch_scripts_is_idempotent(tmp_path):
    path = create_manifest(tmp_path, {"name": "my-app", "dependencies": {"vite": "5"}, "scripts": {"dev": "vite"}})
    project = detect_project(str(tmp_path))

    assert patch_scripts(str(tmp_path), project) is True
    scripts = json.loads(path.read_text())["scripts"]
    assert scripts["dev"] == "dotenvx run -- vite"
    assert scripts["build"] == "dotenvx run -- vite build"
    assert scripts["preview"] == "dotenvx run -- vite preview"
    assert path.read_text().endswith("}\n")

    assert patch_scripts(str(tmp_path), project) is False


def test_patch_gitignore(tmp_path):
    (tmp_path / ".gitignore").write_text("node_modules\n")

    added = patch_gitignore(str(tmp_path), ["production", "staging", "root"])

    assert added == [".env.keys", "!.env.production", "!.env.staging"]
    assert (tmp_path / ".gitignore").read_text() == (
        "node_modules\n\n# dotenvx\n.env.keys\n!.env.production\n!.env.staging\n"
    )
    assert patch_gitignore(str(tmp_path), ["production"]) == []


def test_ensure_vercelignore(tmp_path):
    assert ensure_vercelignore(str(tmp_path)) is True
    assert ".env.keys" in (tmp_path / ".vercelignore").read_text()
    assert ensure_vercelignore(str(tmp_path)) is False


def test_ignore_status(tmp_path):
    (tmp_path / ".gitignore").write_text("node_modules\n")
    assert ignore_status(str(tmp_path)) == {".gitignore": False, ".vercelignore": None}

    (tmp_path / ".gitignore").write_text(".env.keys\n")
    ensure_vercelignore(str(tmp_path))
    assert ignore_status(str(tmp_path)) == {".gitignore": True, ".vercelignore": True}
