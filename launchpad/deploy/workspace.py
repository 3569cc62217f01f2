"""Workspace preparation.

Normalizes a generated project directory into a state that can be pushed
and built. Every step is idempotent: preparing an already-prepared
directory leaves it byte-for-byte unchanged.
"""

import json
import re
import shutil
from pathlib import Path
from urllib.parse import parse_qsl, urlsplit

from launchpad.config import Settings
from launchpad.core.exceptions import WorkspacePreparationError
from launchpad.deploy.plan import DeploymentPlan
from launchpad.models.deployment import PreparedWorkspace
from launchpad.utils.logging import get_logger

BUILD_ARTIFACTS = ("node_modules", "dist", "build", ".vite")

GITIGNORE_CONTENT = """node_modules/
dist/
build/
.env
.env.local
.DS_Store
*.log
"""

DATABASE_URL_LINE = re.compile(
    r"^(?P<prefix>\s*(?:export\s+)?DATABASE_URL\s*=\s*)(?P<quote>[\"']?)(?P<url>.*?)(?P=quote)\s*$"
)

STATIC_START_COMMAND = "npm run preview -- --host --port $PORT"


def ensure_query_param(url: str, key: str = "sslmode", value: str = "disable") -> str:
    """Append ``key=value`` to a connection string unless ``key`` is already set."""
    if not url:
        return url
    query = urlsplit(url).query
    if any(k == key for k, _ in parse_qsl(query, keep_blank_values=True)):
        return url
    separator = "&" if "?" in url else "?"
    if url.endswith(("?", "&")):
        separator = ""
    return f"{url}{separator}{key}={value}"


def railway_config(start_command: str) -> dict:
    return {
        "$schema": "https://railway.com/railway.schema.json",
        "build": {"builder": "NIXPACKS"},
        "deploy": {
            "startCommand": start_command,
            "restartPolicyType": "ON_FAILURE",
            "restartPolicyMaxRetries": 10,
        },
    }


class WorkspacePreparer:
    """Makes a generated project directory deployable."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.logger = get_logger("deploy.workspace")

    def prepare(self, project_path: str | Path, plan: DeploymentPlan) -> PreparedWorkspace:
        """Prepare ``project_path`` for the services in ``plan``.

        Raises:
            WorkspacePreparationError: If the layout is unusable or a file
                operation fails
        """
        root = Path(project_path)
        if not root.is_dir():
            raise WorkspacePreparationError("project directory not found", str(root))

        service_dirs = self._locate_services(root, plan)
        actions: list[str] = []

        try:
            actions += self._remove_git_metadata(root, service_dirs)
            actions += self._remove_build_artifacts(service_dirs)
            actions += self._write_runtime_config(plan, service_dirs)
            if "backend" in service_dirs:
                actions += self._patch_database_urls(service_dirs["backend"])
                actions += self._patch_start_script(service_dirs["backend"])
            actions += self._write_ignore_rules(service_dirs)
            actions += self._write_railway_config(service_dirs)
        except OSError as e:
            raise WorkspacePreparationError(str(e), getattr(e, "filename", None) or str(root))

        self.logger.info(
            "workspace.prepared",
            root=str(root),
            services=sorted(service_dirs),
            actions=len(actions),
        )
        return PreparedWorkspace(
            root=root,
            service_dirs=service_dirs,
            api_url=plan.api_url,
            actions=actions,
        )

    def _locate_services(self, root: Path, plan: DeploymentPlan) -> dict[str, Path]:
        service_dirs: dict[str, Path] = {}
        for spec in plan.repository_services:
            directory = root if spec.source in (None, ".") else root / spec.source
            if not directory.is_dir():
                raise WorkspacePreparationError(
                    f"missing '{spec.source}' directory for service {spec.name}", str(directory)
                )
            if not (directory / "package.json").is_file():
                raise WorkspacePreparationError(
                    f"service {spec.name} has no package.json", str(directory)
                )
            service_dirs[spec.name] = directory
        return service_dirs

    def _remove_git_metadata(self, root: Path, service_dirs: dict[str, Path]) -> list[str]:
        actions = []
        for directory in {root, *service_dirs.values()}:
            git_dir = directory / ".git"
            if git_dir.exists():
                shutil.rmtree(git_dir)
                actions.append(f"removed {git_dir}")
        return actions

    def _remove_build_artifacts(self, service_dirs: dict[str, Path]) -> list[str]:
        actions = []
        for directory in service_dirs.values():
            for name in BUILD_ARTIFACTS:
                artifact = directory / name
                if artifact.is_dir():
                    shutil.rmtree(artifact)
                    actions.append(f"removed {artifact}")
        return actions

    def _write_runtime_config(
        self, plan: DeploymentPlan, service_dirs: dict[str, Path]
    ) -> list[str]:
        actions = []
        content = f"VITE_API_URL={plan.api_url}\n"
        for name in ("frontend", "admin"):
            directory = service_dirs.get(name)
            if directory is None:
                continue
            env_file = directory / ".env.production"
            if env_file.exists() and env_file.read_text(encoding="utf-8") == content:
                continue
            env_file.write_text(content, encoding="utf-8")
            actions.append(f"wrote {env_file}")
        return actions

    def _patch_database_urls(self, backend_dir: Path) -> list[str]:
        actions = []
        for env_file in sorted(backend_dir.glob(".env*")):
            if not env_file.is_file():
                continue
            original = env_file.read_text(encoding="utf-8")
            lines = []
            for line in original.splitlines(keepends=True):
                newline = "\n" if line.endswith("\n") else ""
                match = DATABASE_URL_LINE.match(line.rstrip("\r\n"))
                if match:
                    url = ensure_query_param(match.group("url"))
                    quote = match.group("quote")
                    line = f"{match.group('prefix')}{quote}{url}{quote}{newline}"
                lines.append(line)
            patched = "".join(lines)
            if patched != original:
                env_file.write_text(patched, encoding="utf-8")
                actions.append(f"patched DATABASE_URL in {env_file}")
        return actions

    def _patch_start_script(self, backend_dir: Path) -> list[str]:
        """Run ``setup-db.js`` before the server when the backend ships one."""
        package_json = backend_dir / "package.json"
        if not (backend_dir / "setup-db.js").is_file():
            return []

        try:
            package = json.loads(package_json.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise WorkspacePreparationError(f"invalid package.json: {e}", str(package_json))

        scripts = package.setdefault("scripts", {})
        start = scripts.get("start", "node server.js")
        if "setup-db.js" in start:
            return []
        scripts["start"] = f"node setup-db.js && {start}"
        package_json.write_text(json.dumps(package, indent=2) + "\n", encoding="utf-8")
        return [f"updated start script in {package_json}"]

    def _write_ignore_rules(self, service_dirs: dict[str, Path]) -> list[str]:
        actions = []
        for directory in service_dirs.values():
            gitignore = directory / ".gitignore"
            if not gitignore.exists():
                gitignore.write_text(GITIGNORE_CONTENT, encoding="utf-8")
                actions.append(f"wrote {gitignore}")
        return actions

    def _write_railway_config(self, service_dirs: dict[str, Path]) -> list[str]:
        actions = []
        for name, directory in service_dirs.items():
            if name == "backend":
                if (directory / "setup-db.js").is_file():
                    start_command = "node setup-db.js && node server.js"
                else:
                    start_command = "npm start"
            else:
                start_command = STATIC_START_COMMAND

            config_file = directory / "railway.json"
            content = json.dumps(railway_config(start_command), indent=2) + "\n"
            if config_file.exists() and config_file.read_text(encoding="utf-8") == content:
                continue
            config_file.write_text(content, encoding="utf-8")
            actions.append(f"wrote {config_file}")
        return actions
