#!/usr/bin/env python3
"""branchvault CLI - manage per-branch snapshots of a Steam game."""
from __future__ import annotations

import argparse
import sys
from typing import Optional

from .models import Branch, CopyResult
from .orchestrator import WorkflowObserver, WorkflowState


class ConsoleObserver(WorkflowObserver):
    """Prints workflow events and asks for branch switches on the terminal."""

    def __init__(self, assume_yes: bool = False, stream=None):
        self.assume_yes = assume_yes
        self.stream = stream or sys.stdout
        self._last_percent: dict[Branch, int] = {}

    def _print(self, text: str) -> None:
        print(text, file=self.stream, flush=True)

    def on_message(self, message: str) -> None:
        self._print(message)

    def on_progress(self, branch: Branch, copied: int, total: int) -> None:
        from .copier import progress_percent

        percent = progress_percent(copied, total)
        # Print every 10%
        if percent // 10 > self._last_percent.get(branch, -1) // 10:
            self._last_percent[branch] = percent
            self._print(f"  {branch.value}: {percent}% ({copied}/{total} files)")

    def on_copy_result(self, branch: Branch, result: CopyResult) -> None:
        if result.failed_count:
            self._print(f"⚠️  {branch.value}: {result.failed_count} files could not be copied")
            for failure in result.failures[:10]:
                self._print(f"    {failure.relative_path}: {failure.reason}")

    def on_switch_prompt(self, current: Branch, next_branch: Branch) -> bool:
        self._print("")
        self._print(f"Current branch: {current.display_name}")
        self._print(f"Switch the game to {next_branch.display_name} in Steam (Properties > Betas).")
        if self.assume_yes:
            return True
        try:
            answer = input("Press Enter once the switch has started, or type 'q' to cancel: ")
        except EOFError:
            return False
        return answer.strip().lower() not in ("q", "quit", "n", "no")


def _parse_branches(value: str) -> list[Branch]:
    try:
        return [Branch.parse(part) for part in value.split(",") if part.strip()]
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _parse_branch(value: str) -> Branch:
    try:
        return Branch.parse(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def _load_settings(args):
    from pathlib import Path
    from .config_loader import load_config
    from .errors import ConfigError
    from .observability import configure_logging

    project_path = Path(args.project_path) if getattr(args, "project_path", None) else None
    try:
        settings = load_config(project_path)
    except ConfigError as e:
        print(f"❌ Config error: {e}", file=sys.stderr)
        sys.exit(1)
    configure_logging(settings.logging)
    return settings


def _open_registry(args, settings):
    from .path_resolver import resolve_registry_path
    from .registry import BranchRegistry

    return BranchRegistry(resolve_registry_path(settings, getattr(args, "registry", None)))


def _evaluator(settings):
    from .status import BranchStatusEvaluator

    return BranchStatusEvaluator(
        settings.manifest_reader(),
        executable_name=settings.target.executable,
    )


def _catalog(settings):
    from .catalog import GameCatalog, TargetApp

    return GameCatalog(
        TargetApp(
            app_id=settings.target.app_id,
            names=tuple(settings.target.names),
            executable_name=settings.target.executable,
        )
    )


def _locator(settings):
    from .libraries import LibraryLocator

    return LibraryLocator(settings.store_root, system_volume=settings.steam.system_volume or None)


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="branchvault",
        description="Keep a standalone copy of each Steam branch of a game",
    )
    ap.add_argument("--project-path", help="Project directory for config discovery")
    ap.add_argument("--registry", help="Branch registry file (default: ~/.branchvault/config/...)")

    sub = ap.add_subparsers(dest="cmd")

    sub.add_parser("libraries", help="List Steam library folders")

    sub.add_parser("locate", help="Find the game install across Steam libraries")

    p_status = sub.add_parser("status", help="Show snapshot status per branch")
    p_status.add_argument("--all", dest="show_all", action="store_true", help="Include unselected branches")
    p_status.add_argument("--capture", action="store_true", help="Record the live branch and build id first")

    p_create = sub.add_parser("create", help="Copy the game once per selected branch")
    p_create.add_argument("--snapshot-root", required=True, help="Directory receiving one folder per branch")
    p_create.add_argument(
        "--branches",
        type=_parse_branches,
        required=True,
        help="Comma-separated branches in copy order (e.g. main,beta)",
    )
    p_create.add_argument("--install-path", help="Game install directory (default: auto-detect)")
    p_create.add_argument("--poll-interval", type=float, help="Seconds between branch checks")
    p_create.add_argument("--timeout", type=float, help="Seconds to wait for each branch switch")
    p_create.add_argument("--yes", action="store_true", help="Do not pause at switch prompts")

    p_launch = sub.add_parser("launch", help="Start the game from a branch snapshot")
    p_launch.add_argument("--custom", action="store_true", help="Use the branch's custom launch command")
    p_launch.add_argument("branch", type=_parse_branch)
    p_launch.add_argument("game_args", nargs=argparse.REMAINDER, help="Arguments passed to the game")

    p_set_launch = sub.add_parser("set-launch", help="Set or remove a branch's custom launch command")
    p_set_launch.add_argument("branch", type=_parse_branch)
    p_set_launch.add_argument("path", nargs="?", help="Program to run")
    p_set_launch.add_argument("--working-dir", default="", help="Working directory (ignored when missing)")
    p_set_launch.add_argument("--args", dest="arguments", default="", help="Argument string, e.g. --args=\"-x\"")
    p_set_launch.add_argument("--no-shell", action="store_true", help="Run the program directly, not via the shell")
    p_set_launch.add_argument("--remove", action="store_true", help="Remove the custom launch command")

    p_delete = sub.add_parser("delete", help="Delete a branch snapshot")
    p_delete.add_argument("branch", type=_parse_branch)
    p_delete.add_argument("--yes", action="store_true", help="Skip confirmation")

    p_config = sub.add_parser("config", help="Configuration management")
    config_sub = p_config.add_subparsers(dest="config_cmd")
    p_config_show = config_sub.add_parser("show", help="Show resolved configuration")
    p_config_show.add_argument("--json", dest="as_json", action="store_true", help="Output as JSON")
    p_config_show.add_argument("--sources", action="store_true", help="Show config source files")

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    if args.cmd == "config":
        import json as json_module
        from pathlib import Path

        if not args.config_cmd:
            print("Usage: branchvault config {show}")
            sys.exit(0)

        if args.config_cmd == "show":
            from .config_loader import ConfigError, get_config_paths, load_config

            project_path = Path(args.project_path) if args.project_path else None

            if args.sources:
                paths = get_config_paths(project_path)
                print("Config sources (in priority order):")
                print()
                for name, path in paths.items():
                    if path and path.exists():
                        print(f"  ✓ {name}: {path}")
                    elif path:
                        print(f"  ✗ {name}: {path} (not found)")
                    else:
                        print(f"  - {name}: (not applicable)")
                print()
                print("Environment variables override all file configs.")
                sys.exit(0)

            try:
                config = load_config(project_path)
            except ConfigError as e:
                print(f"❌ Config error: {e}", file=sys.stderr)
                sys.exit(1)

            if args.as_json:
                print(json_module.dumps(config.model_dump(), indent=2))
            else:
                import tomlkit

                doc = tomlkit.document()
                doc.add(tomlkit.comment(" branchvault configuration (resolved)"))
                doc.add(tomlkit.nl())
                for section, values in config.model_dump().items():
                    if isinstance(values, dict):
                        table = tomlkit.table()
                        for key, val in values.items():
                            table.add(key, val)
                        doc.add(section, table)
                    else:
                        doc.add(section, values)
                print(tomlkit.dumps(doc))
            sys.exit(0)

    settings = _load_settings(args)

    if args.cmd == "libraries":
        roots = _locator(settings).discover()
        if not roots:
            print("No Steam libraries found.", file=sys.stderr)
            sys.exit(1)
        for root in roots:
            print(str(root))
        sys.exit(0)

    if args.cmd == "locate":
        app = _catalog(settings).find_target_across_roots(_locator(settings).discover())
        if app is None:
            print(f"❌ App {settings.target.app_id} not found in any Steam library", file=sys.stderr)
            sys.exit(1)
        branch, build_id = settings.manifest_reader().branch_and_build_id(app.install_path)
        print(f"{app.name} ({app.app_id})")
        print(f"  Library:  {app.library_root}")
        print(f"  Install:  {app.install_path}")
        print(f"  Branch:   {branch.value if branch else 'unknown'}")
        print(f"  Build ID: {build_id or 'unknown'}")
        sys.exit(0)

    registry = _open_registry(args, settings)

    if args.cmd == "status":
        from .branches import BranchManager

        config = registry.load()
        if not config.snapshot_root_path:
            print("No snapshots configured yet. Run 'branchvault create' first.", file=sys.stderr)
            sys.exit(1)
        manager = BranchManager(registry, _evaluator(settings))
        if args.capture:
            manager.capture_installed_branch(config)
        records = manager.list_branches(config)
        if not args.show_all:
            records = [r for r in records if r.branch in config.selected_branches]
        print(f"Snapshot root: {config.snapshot_root_path}")
        for record in records:
            marker = "*" if record.is_current_remote_branch else " "
            print(
                f"{marker} {record.display_name:<22} {record.status.value:<17} "
                f"{record.formatted_size:>10} {record.formatted_file_count:>8} files  "
                f"build {record.local_build_id or '---'}  modified {record.formatted_last_modified}"
            )
        sys.exit(0)

    if args.cmd == "create":
        from pathlib import Path
        from .branches import BranchManager
        from .errors import BranchvaultError
        from .orchestrator import SwitchOrchestrator
        from .path_resolver import resolve_snapshot_root

        config = registry.load()
        try:
            root = resolve_snapshot_root(args.snapshot_root)
            config.select_branches(args.branches)
        except ValueError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(2)
        if args.install_path:
            install = Path(args.install_path).expanduser()
            config.update_paths(install.parent.parent, install, root)
        else:
            config.update_paths(config.source_library_path, config.source_install_path, root)

        orchestrator = SwitchOrchestrator(
            config,
            reader=settings.manifest_reader(),
            registry=registry,
            observer=ConsoleObserver(assume_yes=args.yes),
            catalog=_catalog(settings),
            locator=_locator(settings),
            poll_interval=args.poll_interval or settings.workflow.poll_interval,
            timeout=args.timeout if args.timeout is not None else settings.workflow.timeout,
        )
        try:
            result = orchestrator.run()
        except BranchvaultError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)
        except KeyboardInterrupt:
            orchestrator.cancel()
            print("Cancelled.", file=sys.stderr)
            sys.exit(130)

        registry.save(config)
        if result.state == WorkflowState.COMPLETED:
            BranchManager(registry, _evaluator(settings)).capture_installed_branch(config)
            print(f"✅ Snapshots ready in {root} ({len(result.copied_branches)} copied)")
            sys.exit(0)
        if result.state == WorkflowState.TIMED_OUT:
            print(
                f"⏱️  Timed out after {result.elapsed:.0f}s of {result.budget:.0f}s "
                f"waiting for {result.timed_out_branch.value if result.timed_out_branch else '?'}",
                file=sys.stderr,
            )
            sys.exit(1)
        print(f"❌ Aborted: {result.error or result.reason}", file=sys.stderr)
        sys.exit(1)

    if args.cmd == "launch":
        from .branches import BranchManager

        config = registry.load()
        if not config.snapshot_root_path:
            print("No snapshots configured yet.", file=sys.stderr)
            sys.exit(1)
        evaluator = _evaluator(settings)
        manager = BranchManager(registry, evaluator)
        if args.custom:
            ok = manager.launch_custom(config, args.branch)
        else:
            record = evaluator.evaluate(args.branch, config)
            game_args = [a for a in args.game_args if a != "--"]
            ok = manager.launch_branch(record, game_args)
        if not ok:
            print(f"❌ Could not launch {args.branch.display_name}", file=sys.stderr)
            sys.exit(1)
        print(f"Launched {args.branch.display_name}")
        sys.exit(0)

    if args.cmd == "set-launch":
        from .branches import BranchManager
        from .models import LaunchCommand

        config = registry.load()
        manager = BranchManager(registry, _evaluator(settings))
        try:
            if args.remove:
                manager.set_launch_command(config, args.branch, None)
                print(f"Removed custom launch command for {args.branch.display_name}")
                sys.exit(0)
            if not args.path:
                print("❌ A program path is required (or pass --remove)", file=sys.stderr)
                sys.exit(2)
            command = LaunchCommand(args.path, args.working_dir, args.arguments, not args.no_shell)
            manager.set_launch_command(config, args.branch, command)
        except ValueError as e:
            print(f"❌ {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Custom launch command set for {args.branch.display_name}: {command.format()}")
        sys.exit(0)

    if args.cmd == "delete":
        from .branches import BranchManager

        config = registry.load()
        if not config.snapshot_root_path:
            print("No snapshots configured yet.", file=sys.stderr)
            sys.exit(1)
        if not args.yes:
            answer: Optional[str]
            try:
                answer = input(f"Delete {config.branch_folder(args.branch)}? [y/N] ")
            except EOFError:
                answer = None
            if not answer or answer.strip().lower() not in ("y", "yes"):
                print("Not deleted.")
                sys.exit(1)
        ok = BranchManager(registry, _evaluator(settings)).delete_branch(config, args.branch)
        if not ok:
            print(f"❌ Failed to delete {args.branch.display_name}", file=sys.stderr)
            sys.exit(1)
        print(f"Deleted {args.branch.display_name}")
        sys.exit(0)

    ap.print_help()
    sys.exit(2)


if __name__ == "__main__":
    main()
