from __future__ import annotations

import argparse
import json
import signal
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml

from stackapply.core.apply import ApplyExecutor, CancelToken, RunState, StateStore, plan
from stackapply.core.errors import ConfigurationError, StackApplyError
from stackapply.core.graph import load_graph
from stackapply.core.observability.logging import configure_logging
from stackapply.core.providers import build_providers
from stackapply.core.settings import get_settings

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def parse_vars(pairs: List[str]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ConfigurationError(f"--var expects NAME=VALUE (got {pair!r})")
        name, raw = pair.split("=", 1)
        # VALUE is parsed as YAML so numbers, booleans and lists keep their type
        out[name.strip()] = yaml.safe_load(raw) if raw.strip() else ""
    return out


def _emit(obj: Any) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True, default=str))


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="stackapply", description="Apply declarative resource stacks")
    ap.add_argument("--workspace", default=None, help="Workspace directory (default STACKAPPLY_WORKSPACE_ROOT)")
    ap.add_argument("--provider", default=None, help="Default provider for resources that name none")
    ap.add_argument("--log-level", default=None)
    sub = ap.add_subparsers(dest="command", required=True)

    for name in ("validate", "plan", "apply"):
        p = sub.add_parser(name)
        p.add_argument("file", help="Stack document (.yaml/.yml/.json)")
        p.add_argument("--var", action="append", default=[], metavar="NAME=VALUE")
        if name == "apply":
            p.add_argument("--parallelism", type=int, default=None)
            p.add_argument("--continue-on-error", action="store_true", help="Keep applying independent branches")

    p = sub.add_parser("destroy")
    p.add_argument("stack")
    p.add_argument("--parallelism", type=int, default=None)
    p.add_argument("--continue-on-error", action="store_true")

    p = sub.add_parser("state")
    p.add_argument("stack")
    return ap


@contextmanager
def _cancel_on_sigint(cancel: CancelToken) -> Iterator[None]:
    def _handler(signum, frame):
        cancel.cancel()

    previous = signal.signal(signal.SIGINT, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)

    ws = Path(args.workspace).resolve() if args.workspace else settings.workspace_root
    ws.mkdir(parents=True, exist_ok=True)
    default_provider = args.provider or settings.default_provider

    try:
        if args.command == "state":
            store = StateStore(workspace_dir=ws, stack=args.stack)
            if not store.exists():
                print(f"ERROR: no state for stack {args.stack}", file=sys.stderr)
                return EXIT_FAILED
            _emit(store.load().to_dict())
            return EXIT_OK

        if args.command == "destroy":
            ex = ApplyExecutor(
                workspace_dir=ws,
                providers=build_providers(ws),
                parallelism=settings.parallelism if args.parallelism is None else args.parallelism,
                halt_on_error=settings.halt_on_error and not args.continue_on_error,
            )
            cancel = CancelToken()
            with _cancel_on_sigint(cancel):
                report = ex.destroy(args.stack, cancel=cancel)
            _emit(report.to_dict())
            return EXIT_OK if report.state == RunState.SUCCEEDED else EXIT_FAILED

        graph = load_graph(Path(args.file), parse_vars(args.var), default_provider=default_provider)

        if args.command == "validate":
            _emit({"valid": True, **graph.to_dict()})
            return EXIT_OK

        if args.command == "plan":
            _emit(plan(graph, workspace_dir=ws, providers=build_providers(ws)).to_dict())
            return EXIT_OK

        ex = ApplyExecutor(
            workspace_dir=ws,
            providers=build_providers(ws),
            parallelism=settings.parallelism if args.parallelism is None else args.parallelism,
            halt_on_error=settings.halt_on_error and not args.continue_on_error,
        )
        cancel = CancelToken()
        with _cancel_on_sigint(cancel):
            report = ex.apply(graph, cancel=cancel)
        _emit(report.to_dict())
        return EXIT_OK if report.state == RunState.SUCCEEDED else EXIT_FAILED

    except ConfigurationError as e:
        _emit(e.to_dict())
        return EXIT_CONFIG
    except StackApplyError as e:
        _emit(e.to_dict())
        return EXIT_FAILED
    except ValueError as e:
        _emit({"error": "configuration", "detail": str(e)})
        return EXIT_CONFIG
    except FileNotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG


if __name__ == "__main__":
    raise SystemExit(main())
