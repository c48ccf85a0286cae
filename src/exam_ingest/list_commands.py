from __future__ import annotations

import argparse
from importlib import metadata
from pathlib import Path
from typing import Optional
import tomllib

DIST_NAME = "exam-ingest"


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _commands_from_pyproject(pyproject_path: Path) -> dict[str, str]:
    data = tomllib.loads(pyproject_path.read_text(encoding="utf-8"))
    scripts = data.get("project", {}).get("scripts", {})
    if not isinstance(scripts, dict):
        return {}
    return {str(name): str(target) for name, target in scripts.items()}


def _commands_from_distribution(dist_name: str = DIST_NAME) -> dict[str, str]:
    try:
        dist = metadata.distribution(dist_name)
    except metadata.PackageNotFoundError:
        return {}
    return {entry.name: entry.value for entry in dist.entry_points if entry.group == "console_scripts"}


def resolve_commands() -> dict[str, str]:
    """Installed console scripts, falling back to the source checkout's pyproject."""
    commands = _commands_from_distribution()
    if commands:
        return dict(sorted(commands.items()))
    pyproject_path = _project_root() / "pyproject.toml"
    if not pyproject_path.is_file():
        return {}
    return dict(sorted(_commands_from_pyproject(pyproject_path).items()))


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="List exam-ingest command line tools.")
    parser.add_argument("--targets", action="store_true", help="Show the entry point behind each command.")
    args = parser.parse_args(argv)

    commands = resolve_commands()
    if not commands:
        print("No CLI commands found.")
        return 1
    width = max(len(name) for name in commands)
    for name, target in commands.items():
        print(f"{name:<{width}}  {target}" if args.targets else name)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
