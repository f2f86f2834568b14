"""面包屑解析。"""

from filedesk.packages.files.models.file_node import FileNode
from filedesk.packages.files.services.breadcrumbs import Breadcrumb, resolve_breadcrumbs


def _folders() -> dict[str, FileNode]:
    nodes = [
        FileNode(id="a", name="A", is_folder=True, parent_folder_id=None),
        FileNode(id="b", name="B", is_folder=True, parent_folder_id="a"),
        FileNode(id="c", name="C", is_folder=True, parent_folder_id="b"),
    ]
    return {n.id: n for n in nodes}


def test_chain_is_root_first_and_includes_current():
    crumbs = resolve_breadcrumbs("c", _folders())
    assert [c.name for c in crumbs] == ["A", "B", "C"]
    assert crumbs[-1] == Breadcrumb(id="c", name="C")


def test_root_yields_empty_path():
    assert resolve_breadcrumbs(None, _folders()) == []


def test_top_level_folder_yields_only_itself():
    assert resolve_breadcrumbs("a", _folders()) == [Breadcrumb("a", "A")]


def test_unknown_current_folder_yields_empty_path():
    assert resolve_breadcrumbs("nope", _folders()) == []


def test_missing_ancestor_truncates_path():
    nodes = {"x": FileNode(id="x", name="X", is_folder=True, parent_folder_id="gone")}
    assert [c.to_dict() for c in resolve_breadcrumbs("x", nodes)] == [{"id": "x", "name": "X"}]


def test_cyclic_data_stops():
    nodes = {
        "p": FileNode(id="p", name="P", is_folder=True, parent_folder_id="q"),
        "q": FileNode(id="q", name="Q", is_folder=True, parent_folder_id="p"),
    }
    assert [c.name for c in resolve_breadcrumbs("p", list(nodes.values()))] == ["Q", "P"]
