from __future__ import annotations

from cmsstore.services.content import build_tree, pick_valid_columns


def test_nested_tree_attaches_children() -> None:
    nodes = [
        {"id": "root", "parent_id": None, "path": "/"},
        {"id": "a", "parent_id": "root", "path": "/a"},
        {"id": "b", "parent_id": "a", "path": "/a/b"},
    ]
    tree = build_tree(nodes)
    assert [node["id"] for node in tree] == ["root"]
    assert tree[0]["children"][0]["id"] == "a"
    assert tree[0]["children"][0]["children"][0]["id"] == "b"


def test_nodes_with_missing_parent_become_roots() -> None:
    tree = build_tree([{"id": "b", "parent_id": "filtered-out", "path": "/a/b"}])
    assert [node["id"] for node in tree] == ["b"]


def test_pick_valid_columns_drops_ui_keys() -> None:
    assert pick_valid_columns({"title": "Home", "expanded": True, "_id": "n1"}) == {"title": "Home", "id": "n1"}
