"""依赖图引擎

DepGraph 是 {内容哈希: [直接依赖哈希]} 的邻接表。所有持久化前的邻接表
都经过去重 + 字典序排序，保证相同逻辑输入产生相同的 DEPS 字节。

"正在构建的包" 不作为图中的键出现：构建器单独持有它的直接依赖列表，
只在序列化为 DEPS 时写成 ``this`` 键，读取时再提升为包自身的哈希。
"""

from __future__ import annotations

import heapq
from typing import Any

from dpm.core.exceptions import CyclicDependencyError, FormatError

DepGraph = dict[str, list[str]]

# DEPS 文件中代表 "当前包" 的键
SELF_KEY = "this"


def _unique_sorted(values: list[str]) -> list[str]:
    return sorted(set(values))


def normalize(graph: DepGraph) -> DepGraph:
    """返回新图，每个邻接表都去重并排序"""
    return {k: _unique_sorted(v) for k, v in graph.items()}


def merge(g1: DepGraph, g2: DepGraph) -> DepGraph:
    """合并两个依赖图，输入不会被修改

    同时出现在两个图中的键，其邻接表取并集后去重排序；
    只出现在一侧的键同样去重排序后原样保留。
    """
    merged: dict[str, list[str]] = {k: list(v) for k, v in g1.items()}
    for k, v in g2.items():
        merged.setdefault(k, []).extend(v)
    return normalize(merged)


def toposort(graph: DepGraph) -> tuple[list[str], list[str]]:
    """拓扑排序，依赖在前

    返回 (order, cyclic)：
      - order: 可排序节点，每个节点都排在它依赖的全部节点之后；
        同时就绪的节点按哈希字典序输出，保证跨机器结果一致
      - cyclic: 因参与环（或依赖环上节点）而无法排序的节点，已排序

    只出现在邻接表中、自身不是键的节点视为无依赖的叶子。
    """
    nodes: set[str] = set(graph)
    for deps in graph.values():
        nodes.update(deps)

    pending: dict[str, int] = {}
    dependents: dict[str, list[str]] = {n: [] for n in nodes}
    for n in nodes:
        deps = set(graph.get(n, ()))
        pending[n] = len(deps)
        for d in deps:
            dependents[d].append(n)

    ready = [n for n, count in pending.items() if count == 0]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        n = heapq.heappop(ready)
        order.append(n)
        for parent in dependents[n]:
            pending[parent] -= 1
            if pending[parent] == 0:
                heapq.heappush(ready, parent)

    emitted = set(order)
    cyclic = sorted(n for n in nodes if n not in emitted)
    return order, cyclic


def check_acyclic(graph: DepGraph) -> list[str]:
    """拓扑排序并在存在环时抛出 CyclicDependencyError"""
    order, cyclic = toposort(graph)
    if cyclic:
        raise CyclicDependencyError(cyclic)
    return order


def to_wire(graph: DepGraph, self_deps: list[str]) -> dict[str, list[str]]:
    """生成写入 DEPS 的映射：图本身 + ``this`` 键下的当前包直接依赖"""
    wire = normalize(graph)
    wire[SELF_KEY] = _unique_sorted(self_deps)
    return wire


def from_wire(data: Any, own_hash: str) -> DepGraph:
    """解析 DEPS 内容，把 ``this`` 键提升为包自身哈希"""
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FormatError(f"DEPS 内容必须是映射，实际为 {type(data).__name__}")

    graph: dict[str, list[str]] = {}
    for key, deps in data.items():
        if deps is None:
            deps = []
        if not isinstance(deps, list) or not all(isinstance(d, str) for d in deps):
            raise FormatError(f"DEPS 中 '{key}' 的依赖列表格式错误")
        graph[str(key)] = list(deps)

    graph[own_hash] = graph.pop(SELF_KEY, graph.get(own_hash, []))
    return normalize(graph)
