#!/usr/bin/env python
import sys
import json
import argparse
from pathlib import Path
from mazelang import GridWorld, ProgramLoader, Simulator, TallyOutcomeEvaluator
from mazelang.errors import MazeLangError
from mazelang.persistence import load_snapshot

def main(argv=None):
    parser = argparse.ArgumentParser(description="MazeLang CLI - run block programs against a maze world")
    subparsers = parser.add_subparsers(dest="command")

    # 'run' command
    run_parser = subparsers.add_parser("run", help="Simulate a program headlessly and print the result")
    run_parser.add_argument("program", help="Path to the program JSON")
    run_parser.add_argument("--world", required=True, help="Path to a world snapshot JSON")
    run_parser.add_argument("--targets", help="Path to a victory targets JSON (batteries, boxes, statements)")

    # 'check' command
    check_parser = subparsers.add_parser("check", help="Load a program and report block count and warnings")
    check_parser.add_argument("program", help="Path to the program JSON")

    args = parser.parse_args(argv)

    if args.command == "run":
        try:
            program = ProgramLoader().load(Path(args.program))
            world = GridWorld.from_snapshot(load_snapshot(args.world))
            targets = json.loads(Path(args.targets).read_text(encoding="utf-8")) if args.targets else {}
            result = Simulator(world, TallyOutcomeEvaluator.from_dict(targets)).simulate(program)
        except (MazeLangError, OSError, ValueError) as e:
            print(f"[Error] {str(e)}")
            sys.exit(1)
        print(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.outcome.won else 2)
    elif args.command == "check":
        try:
            program = ProgramLoader().load(Path(args.program))
        except (MazeLangError, OSError) as e:
            print(f"[Error] {str(e)}")
            sys.exit(1)
        print(f"[CLI] {program.name}: {program.block_count} blocks, {len(program.functions)} functions")
        for w in program.warnings:
            print(f"  warning: {w}")
    else:
        parser.print_help()

if __name__ == "__main__":
    main()
