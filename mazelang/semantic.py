"""
CallGraphAnalyzer: load-time diagnostics over a program's function calls.

Builds a directed graph (networkx) with one node per function plus a root node for
the top-level actions, and one edge per callFunction site. Findings are reported
as warnings only:
- calls to functions that are not defined (these fail at runtime)
- recursive cycles (bounded at runtime by the operation cap)
- functions never reachable from the top-level actions
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Set

import networkx as nx
from loguru import logger

from .ast import ActionNode, CallFunction, If, Program, Repeat, While

ROOT = "<main>"


def iter_calls(actions: Iterable[ActionNode]) -> Iterator[str]:
    for node in actions:
        if isinstance(node, CallFunction):
            yield node.function_name
        elif isinstance(node, Repeat):
            yield from iter_calls(node.body)
        elif isinstance(node, While):
            yield from iter_calls(node.body_actions)
        elif isinstance(node, If):
            yield from iter_calls(node.then_actions)
            for clause in node.else_if_clauses:
                yield from iter_calls(clause.then_actions)
            yield from iter_calls(node.else_actions)


@dataclass
class CallGraphReport:
    undefined: Set[str] = field(default_factory=set)
    cycles: List[List[str]] = field(default_factory=list)
    unused: Set[str] = field(default_factory=set)

    def messages(self) -> List[str]:
        out = []
        for name in sorted(self.undefined):
            out.append(f"Call to undefined function '{name}'")
        for cycle in self.cycles:
            out.append(f"Recursive function calls: {' -> '.join(cycle + cycle[:1])}")
        for name in sorted(self.unused):
            out.append(f"Function '{name}' is never called")
        return out


class CallGraphAnalyzer:
    def __init__(self, program: Program):
        self.program = program
        self.graph: nx.DiGraph = nx.DiGraph()

    def build(self) -> nx.DiGraph:
        self.graph.add_node(ROOT)
        for name in self.program.functions:
            self.graph.add_node(name, defined=True)
        for callee in iter_calls(self.program.actions):
            self.graph.add_edge(ROOT, callee)
        for name, fn in self.program.functions.items():
            for callee in iter_calls(fn.body):
                self.graph.add_edge(name, callee)
        return self.graph

    def analyze(self) -> CallGraphReport:
        if self.graph.number_of_nodes() == 0:
            self.build()
        report = CallGraphReport()
        for node in self.graph.nodes:
            if node != ROOT and node not in self.program.functions:
                report.undefined.add(node)
        report.cycles = [sorted_cycle(c) for c in nx.simple_cycles(self.graph)]
        reachable = nx.descendants(self.graph, ROOT)
        report.unused = {n for n in self.program.functions if n not in reachable}
        for msg in report.messages():
            logger.warning(msg)
        return report


def sorted_cycle(cycle: List[str]) -> List[str]:
    # rotate so the smallest name leads; keeps reports stable
    if not cycle:
        return cycle
    k = cycle.index(min(cycle))
    return cycle[k:] + cycle[:k]


def analyze(program: Program) -> CallGraphReport:
    report = CallGraphAnalyzer(program).analyze()
    program.warnings.extend(report.messages())
    return report
