"""filebridge command-line entry point."""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import sys
from pathlib import Path

from filebridge.paths import normalize_remote_path, remote_basename
from filebridge.progress import DELETE_PROGRESS, TRANSFER_PROGRESS, DeleteProgress, TransferProgress
from filebridge.service import CommandResult, FileService


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="filebridge", description="Transfer files over FTP or SFTP"
    )
    parser.add_argument("--host", required=True, help="Server host name or address")
    parser.add_argument("--port", type=int, default=21, help="Server port (default: 21)")
    parser.add_argument("--user", default=None, help="User name (default: anonymous)")
    parser.add_argument("--password", default=None, help="Password; prompted when '-'")
    parser.add_argument(
        "--protocol",
        choices=("auto", "ftp", "sftp"),
        default="auto",
        help="Protocol to use; 'auto' picks an order from the port",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    ls = sub.add_parser("ls", help="List a remote directory")
    ls.add_argument("path", nargs="?", default="/")
    ls.add_argument("--json", action="store_true", help="Print the listing as JSON")

    find = sub.add_parser("find", help="Search remote names")
    find.add_argument("path")
    find.add_argument("query")
    find.add_argument("--no-recursive", action="store_true")

    get = sub.add_parser("get", help="Download a remote file or directory")
    get.add_argument("remote")
    get.add_argument(
        "local", nargs="?", default=None, help="Local target (default: the download folder)"
    )

    put = sub.add_parser("put", help="Upload a local file or directory")
    put.add_argument("local")
    put.add_argument("remote")

    rm = sub.add_parser("rm", help="Delete a remote file or directory tree")
    rm.add_argument("path")

    mkdir = sub.add_parser("mkdir", help="Create a remote directory")
    mkdir.add_argument("path")

    mv = sub.add_parser("mv", help="Rename a remote file or directory")
    mv.add_argument("old")
    mv.add_argument("new")

    cat = sub.add_parser("cat", help="Print a remote text file")
    cat.add_argument("path")

    return parser


def _print_transfer(event: TransferProgress) -> None:
    print(
        f"\r{event.item_name}: {event.percent:5.1f}% {event.speed}",
        end="\n" if event.speed == "Done" else "",
        file=sys.stderr,
    )


def _print_delete(event: DeleteProgress) -> None:
    print(
        f"deleted {event.current_item} ({event.deleted_items}/{event.total_items})",
        file=sys.stderr,
    )


def run_command(service: FileService, args: argparse.Namespace) -> CommandResult:
    if args.command == "ls":
        result = service.list_files(args.path, is_remote=True)
        if result.success and args.json:
            print(json.dumps([item.to_dict() for item in result.data or []], indent=2))
        elif result.success:
            for item in result.data or []:
                print(f"{item.display_size:>10}  {item.display_modified:16}  {item.name}")
        return result
    if args.command == "find":
        result = service.search_files(
            args.path, args.query, is_remote=True, recursive=not args.no_recursive
        )
        if result.success:
            for item in result.data or []:
                print(item.full_path)
        return result
    if args.command == "get":
        local = args.local
        if local is None:
            folder = Path(service.settings.transfer.default_download_dir).expanduser()
            try:
                folder.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                return CommandResult.fail(f"Failed to create download folder '{folder}': {e}")
            local = str(folder / remote_basename(normalize_remote_path(args.remote)))
        return service.download(args.remote, local)
    if args.command == "put":
        return service.upload(args.local, args.remote)
    if args.command == "rm":
        return service.delete(args.path, is_remote=True)
    if args.command == "mkdir":
        return service.mkdir(args.path, is_remote=True)
    if args.command == "mv":
        return service.rename(args.old, args.new, is_remote=True)
    result = service.read_text_file(args.path, is_remote=True)
    if result.success:
        print(result.data, end="")
    return result


def main(argv: list[str] | None = None, service: FileService | None = None) -> int:
    """Run one command against a server and return the exit status."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    password = args.password
    if password == "-":
        password = getpass.getpass(f"Password for {args.user or 'anonymous'}@{args.host}: ")

    service = service or FileService()
    service.events.subscribe(TRANSFER_PROGRESS, _print_transfer)
    service.events.subscribe(DELETE_PROGRESS, _print_delete)

    if args.protocol == "auto":
        connected = service.connect_auto(args.host, args.port, args.user, password)
    else:
        connected = service.connect(args.host, args.port, args.user, password, args.protocol)
    if not connected.success:
        print(f"error: {connected.error}", file=sys.stderr)
        return 1

    try:
        result = run_command(service, args)
    finally:
        service.disconnect()

    if not result.success:
        print(f"error: {result.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
