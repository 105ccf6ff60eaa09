#===========================================================================
# pimsync/sync/categories.py
# Category tree resolver.
# Remote category references (with their parent chains) become an arena of
# nodes keyed by remote id; a worklist emits them root-first and each node
# is matched to a local term by remote id, then by name under the resolved
# parent, else created.
#===========================================================================
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pimsync.pim.records import CategoryRef, category_ref
from pimsync.sync.components import mapper

logger = logging.getLogger("uvicorn.error")

_CHILD_KEYS = ("_children", "_categories", "children")


@dataclass
class CategoryNode:
    key: str
    name: str
    remote_id: Optional[int] = None
    parent_key: Optional[str] = None


def _node_key(remote_id: Optional[int], name: str, parent_key: Optional[str]) -> str:
    if remote_id is not None:
        return f"id:{remote_id}"
    return f"name:{name.strip().lower()}@{parent_key or ''}"


def root_first(arena: Dict[str, CategoryNode]) -> List[CategoryNode]:
    """Parents before children; each node once. Cycles are cut where they close."""
    ordered: List[CategoryNode] = []
    done: set[str] = set()
    for start in arena:
        stack = [start]
        while stack:
            key = stack[-1]
            if key in done:
                stack.pop()
                continue
            parent = arena[key].parent_key
            if parent and parent in arena and parent not in done and parent not in stack:
                stack.append(parent)
                continue
            stack.pop()
            done.add(key)
            ordered.append(arena[key])
    return ordered


class CategoryResolver:
    def __init__(self, store, lang: str, super_category_id: int = 0):
        self.store = store
        self.lang = lang
        self.super_category_id = super_category_id or 0
        self.seen_ids: set[str] = set()
        self._terms: Dict[str, int] = {}     # node key -> term id, per run

    def reset(self) -> None:
        self.seen_ids = set()
        self._terms = {}

    def _is_super(self, remote_id: Optional[int]) -> bool:
        return bool(self.super_category_id) and remote_id == self.super_category_id

    def add_chain(self, arena: Dict[str, CategoryNode], ref: CategoryRef) -> Optional[str]:
        """
        Walk ref → parent → grandparent and add named nodes to the arena.
        Returns the key of the leaf node (None when nothing usable).
        """
        chain: List[CategoryRef] = []
        cur: Optional[CategoryRef] = ref
        while cur is not None and len(chain) < 32:
            chain.append(cur)
            if cur.parent is not None:
                cur = cur.parent
            elif cur.parent_id is not None or cur.parent_name:
                cur = CategoryRef(id=cur.parent_id, name=cur.parent_name)
            else:
                cur = None

        parent_key: Optional[str] = None
        leaf: Optional[str] = None
        for node in reversed(chain):
            if not node.name or self._is_super(node.id):
                continue
            key = _node_key(node.id, node.name, parent_key)
            if key not in arena:
                arena[key] = CategoryNode(key=key, name=node.name, remote_id=node.id, parent_key=parent_key)
            parent_key = key
            leaf = key
        return leaf

    async def _resolve_node(self, node: CategoryNode) -> int:
        if node.key in self._terms:
            return self._terms[node.key]
        parent_term = self._terms.get(node.parent_key) if node.parent_key else None

        term_id: Optional[int] = None
        if node.remote_id is not None:
            term = await self.store.find_term_by_remote_id(node.remote_id)
            if term is not None:
                term_id = term.id
        if term_id is None:
            term = await self.store.find_term_by_name(node.name, parent_term)
            if term is not None:
                term_id = term.id
                if node.remote_id is not None and term.remote_id is None:
                    await self.store.set_term_remote_id(term_id, node.remote_id)
        if term_id is None:
            term_id = await self.store.create_term(node.name, parent_term, node.remote_id)
            logger.info("[CATEGORIES] created '%s' (remote %s, parent term %s)", node.name, node.remote_id, parent_term)

        if node.remote_id is not None:
            self.seen_ids.add(str(node.remote_id))
        self._terms[node.key] = term_id
        return term_id

    async def resolve(self, arena: Dict[str, CategoryNode]) -> List[int]:
        return [await self._resolve_node(node) for node in root_first(arena)]

    async def assign_categories(self, entry_id: int, record: Dict[str, Any]) -> List[int]:
        """Resolve a product's categories and assign the leaves plus all ancestors."""
        arena: Dict[str, CategoryNode] = {}
        for ref in mapper.categories(record, self.lang):
            self.add_chain(arena, ref)
        if not arena:
            return []
        term_ids = list(dict.fromkeys(await self.resolve(arena)))
        await self.store.set_entry_categories(entry_id, term_ids)
        return term_ids

    async def sync_category_tree(self, client, languages: Optional[List[str]] = None) -> Dict[str, Any]:
        if not self.super_category_id:
            return {"success": True, "terms": 0}
        params: Dict[str, Any] = {
            "category_id": self.super_category_id,
            "include_children": True,
            "include_category_translations": True,
        }
        if languages:
            params["include_languages"] = languages

        result = await client.call("getCategories", params)
        if not result.get("success"):
            logger.error("[CATEGORIES] getCategories API error: %s", (result.get("error") or {}).get("message"))
            return {"success": False, "terms": 0}

        data = result.get("result") or {}
        roots = data.get("categories", data) if isinstance(data, dict) else data
        if isinstance(roots, dict):
            roots = [roots]
        if not isinstance(roots, list):
            logger.warning("[CATEGORIES] unexpected getCategories format: %s", type(roots).__name__)
            return {"success": False, "terms": 0}

        arena: Dict[str, CategoryNode] = {}
        stack: List[tuple] = [(r, None) for r in roots]
        while stack:
            raw, parent_key = stack.pop(0)
            if not isinstance(raw, dict):
                continue
            ref = category_ref({k: v for k, v in raw.items() if k != "_parent_category"}, self.lang)
            key = parent_key
            if ref is not None and ref.name and not self._is_super(ref.id):
                key = _node_key(ref.id, ref.name, parent_key)
                arena.setdefault(key, CategoryNode(key=key, name=ref.name, remote_id=ref.id, parent_key=parent_key))
            for ck in _CHILD_KEYS:
                for child in raw.get(ck) or []:
                    stack.append((child, key))

        term_ids = await self.resolve(arena)
        logger.info("[CATEGORIES] tree synced from super category %s: %s terms", self.super_category_id, len(term_ids))
        return {"success": True, "terms": len(term_ids)}
