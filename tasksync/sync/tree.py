"""タスクツリーの組み立て

フラットなタスク一覧（uid と parent_id = RELATED-TO を持つ）から親子ツリーを作る。
uid → 配列インデックスの表と、インデックスの子リストで組み立ててから
subtasks に反映するので、呼び出しごとに同じ構造が再生成される。
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class TaskPage:
    """get_tasksの戻り値"""
    tasks: List = field(default_factory=list)
    next_page_token: Optional[str] = None


def build_task_tree(records: Sequence[T], next_page_token: Optional[str] = None) -> TaskPage:
    """親子関係を組み立ててトップレベルのタスクを返す

    - 同じバッチ内に親が見つからないもの（孤児）はトップレベルに昇格
    - 自分自身を親にしているもの、親子が循環しているものも同様に昇格
    - 並び順はサーバーの返却順を維持（子は親ごとに絞り込んだ返却順）
    - uidが重複した場合は先に出てきたものがそのuidを持つ
    """
    nodes = [r for r in records if r is not None]

    index: Dict[str, int] = {}
    for i, node in enumerate(nodes):
        uid = getattr(node, "uid", None)
        if uid and uid not in index:
            index[uid] = i

    parent_of: List[Optional[int]] = []
    for i, node in enumerate(nodes):
        parent_uid = getattr(node, "parent_id", None)
        parent = index.get(parent_uid) if parent_uid else None
        if parent is None and parent_uid:
            logger.debug(f"Parent {parent_uid} not in batch, promoting {getattr(node, 'uid', None)} to top level")
        parent_of.append(parent if parent != i else None)

    children: List[List[int]] = [[] for _ in nodes]
    roots: List[int] = []
    for i, parent in enumerate(parent_of):
        if parent is None:
            roots.append(i)
        else:
            children[parent].append(i)

    # 根から辿れないノード（循環の一部）を昇格
    reached = [False] * len(nodes)

    def mark(start: int) -> None:
        stack = [start]
        while stack:
            current = stack.pop()
            if reached[current]:
                continue
            reached[current] = True
            stack.extend(children[current])

    for root in roots:
        mark(root)
    for i in range(len(nodes)):
        if not reached[i]:
            logger.warning(f"Parent cycle detected at {getattr(nodes[i], 'uid', None)}, promoting to top level")
            children[parent_of[i]].remove(i)
            parent_of[i] = None
            roots.append(i)
            mark(i)
    roots.sort()

    for i, node in enumerate(nodes):
        node.subtasks = [nodes[c] for c in children[i]]

    return TaskPage(tasks=[nodes[r] for r in roots], next_page_token=next_page_token)


def iter_tasks(tasks: Iterable[T]) -> Iterator[T]:
    """深さ優先で全タスクを列挙"""
    for task in tasks:
        yield task
        yield from iter_tasks(getattr(task, "subtasks", None) or [])


def find_task(tasks: Iterable[T], key: str) -> Optional[T]:
    """idかuidが一致するタスクを探す"""
    for task in iter_tasks(tasks):
        if getattr(task, "id", None) == key or getattr(task, "uid", None) == key:
            return task
    return None
