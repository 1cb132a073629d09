"""Process entry point: parse arguments and run the selected mode."""

import asyncio
import sys

from ethrelay.cli.arg_parser import parse_args


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)

    # Deferred so --help/--version stay fast and side-effect free
    from ethrelay.cli import serve

    if args.command == "tools":
        sys.exit(serve.list_tools(as_json=args.as_json))

    if args.http:
        coro = serve.run_http(args.port, args.config, args.verbose, args.log_dir)
    else:
        coro = serve.run_stdio(args.config, args.verbose, args.log_dir)

    try:
        exit_code = asyncio.run(coro)
    except KeyboardInterrupt:
        exit_code = 130
    sys.exit(exit_code)
