import json
import os

from .models import KEYS_FILE_NAME, ROOT_ENV_NAME, Project
from .runner import _debug

MANIFEST_FILE_NAME = "package.json"
DOTENVX_PACKAGE = "@dotenvx/dotenvx"
RUN_PREFIX = "dotenvx run -- "

VITE_VARIANTS = [
    (("@vitejs/plugin-react", "@vitejs/plugin-react-swc"), "Vite + React"),
    (("@vitejs/plugin-vue",), "Vite + Vue"),
    (("@sveltejs/vite-plugin-svelte",), "Vite + Svelte"),
]

# Scripts wrapped with `dotenvx run --`, and the command used when the script is missing.
FRAMEWORK_SCRIPTS = {
    "nextjs": {"dev": "next dev", "build": "next build", "start": "next start"},
    "vite": {"dev": "vite", "build": "vite build", "preview": "vite preview"},
}


def _read_manifest(project_dir: str) -> dict | None:
    path = os.path.join(project_dir, MANIFEST_FILE_NAME)
    if not os.path.exists(path):
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        _debug(f"Cannot parse {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def _all_dependencies(manifest: dict) -> dict:
    deps = {}
    deps.update(manifest.get("dependencies") or {})
    deps.update(manifest.get("devDependencies") or {})
    return deps


def get_project_name(project_dir: str) -> str | None:
    manifest = _read_manifest(project_dir)
    if manifest is None:
        return None
    return manifest.get("name") or None


def detect_project(project_dir: str) -> Project:
    """Detects a Next.js or Vite project from package.json."""
    manifest = _read_manifest(project_dir)
    if manifest is None:
        return Project()

    name = manifest.get("name") or None
    deps = _all_dependencies(manifest)

    if "next" in deps:
        return Project(type="nextjs", version=deps["next"], framework="Next.js", name=name)

    if "vite" in deps:
        framework = "Vite"
        for packages, label in VITE_VARIANTS:
            if any(p in deps for p in packages):
                framework = label
                break
        return Project(type="vite", version=deps["vite"], framework=framework, name=name)

    return Project(name=name)


def is_dotenvx_installed(project_dir: str) -> bool:
    manifest = _read_manifest(project_dir)
    if manifest is None:
        return False
    return DOTENVX_PACKAGE in _all_dependencies(manifest)


def scripts_to_add(project: Project, scripts: dict[str, str]) -> dict[str, str]:
    """Returns the script entries init should set for this project."""
    to_add = {"dotenvx": "dotenvx"}
    for script, default in FRAMEWORK_SCRIPTS.get(project.type, {}).items():
        current = scripts.get(script)
        if not current:
            to_add[script] = RUN_PREFIX + default
        elif "dotenvx" not in current:
            to_add[script] = RUN_PREFIX + current
    return to_add


def patch_scripts(project_dir: str, project: Project) -> bool:
    """Wraps the framework's run scripts with `dotenvx run --`.

    Returns True if package.json was rewritten.
    """
    path = os.path.join(project_dir, MANIFEST_FILE_NAME)
    with open(path, encoding="utf-8") as f:
        manifest = json.load(f)

    scripts = manifest.get("scripts") or {}
    to_add = scripts_to_add(project, scripts)
    if all(scripts.get(key) == value for key, value in to_add.items()):
        return False

    manifest["scripts"] = {**scripts, **to_add}
    with open(path, "w", encoding="utf-8") as f:
        f.write(json.dumps(manifest, indent=2, ensure_ascii=False) + "\n")
    return True


def patch_gitignore(project_dir: str, env_names: list[str]) -> list[str]:
    """Ignores `.env.keys` and un-ignores the encrypted env files.

    Returns the lines appended, empty if the file was already configured.
    """
    path = os.path.join(project_dir, ".gitignore")
    content = ""
    if os.path.exists(path):
        with open(path, encoding="utf-8") as f:
            content = f.read()

    lines = []
    if KEYS_FILE_NAME not in content:
        lines.append(KEYS_FILE_NAME)
    for env_name in env_names:
        if env_name == ROOT_ENV_NAME:
            continue
        negation = f"!.env.{env_name}"
        if negation not in content and negation not in lines:
            lines.append(negation)

    if lines:
        with open(path, "a", encoding="utf-8") as f:
            f.write("\n# dotenvx\n" + "\n".join(lines) + "\n")
    return lines


def ensure_vercelignore(project_dir: str) -> bool:
    """Creates `.vercelignore` excluding `.env.keys`. Returns False if it already existed."""
    path = os.path.join(project_dir, ".vercelignore")
    if os.path.exists(path):
        return False
    with open(path, "w", encoding="utf-8") as f:
        f.write(f"# Prevent {KEYS_FILE_NAME} from being deployed\n{KEYS_FILE_NAME}\n")
    return True


def ignore_status(project_dir: str) -> dict[str, bool | None]:
    """Maps each ignore file to whether it protects `.env.keys`; None if the file is missing."""
    status: dict[str, bool | None] = {}
    for name in (".gitignore", ".vercelignore"):
        path = os.path.join(project_dir, name)
        if not os.path.exists(path):
            status[name] = None
            continue
        with open(path, encoding="utf-8") as f:
            status[name] = KEYS_FILE_NAME in f.read()
    return status
