"""Shared fixtures for the ng_upgrade test suite."""
import json
import os
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from ng_upgrade.commands import CommandResult, CommandRunner
from ng_upgrade.exceptions import CommandFailedError, CommandTimeoutError

IGNORED_DIRS = {'node_modules', 'dist', '.git', '.ng-upgrade', '.angular'}


class FakeCommandRunner(CommandRunner):
    """Command runner that records calls and answers from scripted responses."""

    def __init__(self, node_version: str = "v20.11.1"):
        self.calls: List[str] = []
        self.timeouts: List[float] = []
        self._responses = []
        self.respond("node --version", stdout=node_version)
        self.respond("tsc --version", stdout="Version 5.6.2")

    def respond(self, fragment: str, returncode: int = 0, stdout: str = "", stderr: str = "",
                timeout: bool = False) -> None:
        """Script the response for commands containing fragment; later scripts win."""
        self._responses.append((fragment, returncode, stdout, stderr, timeout))

    def commands_matching(self, fragment: str) -> List[str]:
        return [call for call in self.calls if fragment in call]

    def run(self, command, cwd, timeout, env=None, check=False) -> CommandResult:
        display = command if isinstance(command, str) else ' '.join(command)
        self.calls.append(display)
        self.timeouts.append(timeout)

        returncode, stdout, stderr = 0, "", ""
        for fragment, code, out, err, times_out in reversed(self._responses):
            if fragment in display:
                if times_out:
                    raise CommandTimeoutError(display, timeout)
                returncode, stdout, stderr = code, out, err
                break

        result = CommandResult(display, returncode, stdout, stderr)
        if check and not result.success:
            raise CommandFailedError(display, returncode, result.output)
        return result


def write_json(path: Path, data: Dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding='utf-8')


def read_tree(root: Path, ignored: Optional[set] = None) -> Dict[str, bytes]:
    """Map of relative path to contents for every file outside the ignored directories."""
    ignored = IGNORED_DIRS if ignored is None else ignored
    tree = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = [d for d in dirnames if d not in ignored]
        for filename in filenames:
            full = Path(dirpath) / filename
            tree[str(full.relative_to(root))] = full.read_bytes()
    return tree


@pytest.fixture
def fake_runner():
    return FakeCommandRunner()


@pytest.fixture
def tree_reader():
    return read_tree


def create_angular_project(root: Path) -> Path:
    """Write a small Angular 14 application with build output and installed dependencies."""
    write_json(root / "package.json", {
        "name": root.name,
        "version": "1.0.0",
        "dependencies": {
            "@angular/common": "^14.2.0",
            "@angular/core": "^14.2.0",
            "@angular/router": "^14.2.0",
            "rxjs": "~7.5.0",
        },
        "devDependencies": {
            "@angular/cli": "^14.2.0",
            "@angular/compiler-cli": "^14.2.0",
            "typescript": "~4.7.2",
        },
    })
    write_json(root / "angular.json", {
        "version": 1,
        "projects": {root.name: {"projectType": "application", "root": ""}},
    })
    write_json(root / "tsconfig.json", {"compilerOptions": {"strict": True}})
    (root / "src" / "app").mkdir(parents=True)
    (root / "src" / "main.ts").write_text("bootstrapApplication(AppComponent);\n")
    (root / "src" / "app" / "app.component.ts").write_text("export class AppComponent {}\n")
    (root / "src" / "assets").mkdir()
    (root / "src" / "assets" / "logo.bin").write_bytes(bytes(range(256)))

    write_json(root / "node_modules" / "@angular" / "core" / "package.json", {"version": "14.2.0"})
    (root / "dist" / root.name).mkdir(parents=True)
    (root / "dist" / root.name / "main.js").write_text("console.log('built');\n")
    (root / ".git").mkdir()
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    (root / "debug.log").write_text("noise\n")
    return root


@pytest.fixture
def make_project(tmp_path):
    """Factory for independent projects under tmp_path."""
    return lambda name: create_angular_project(tmp_path / name)


@pytest.fixture
def angular_project(make_project):
    return make_project("demo-app")
