"""移动校验：自身、原地与子孙目标的拒绝规则。"""

from typing import Optional

import pytest

from filedesk.packages.files.core.exceptions import MoveRejected
from filedesk.packages.files.models.file_node import FileNode
from filedesk.packages.files.services.move_validator import check_move, validate_move


def _folder(node_id: str, parent_id: Optional[str] = None) -> FileNode:
    return FileNode(id=node_id, name=node_id, is_folder=True, parent_folder_id=parent_id, file_size=0)


@pytest.fixture()
def tree() -> dict[str, FileNode]:
    # projects -> 2024 -> q1 -> week1 ; archive (根级)
    nodes = [
        _folder("projects"),
        _folder("2024", "projects"),
        _folder("q1", "2024"),
        _folder("week1", "q1"),
        _folder("archive"),
    ]
    return {n.id: n for n in nodes}


def test_moving_folder_into_its_own_child_is_rejected(tree):
    with pytest.raises(MoveRejected) as exc_info:
        check_move(tree["projects"], "2024", tree)
    assert "inside" in exc_info.value.reason
    assert validate_move(tree["projects"], "2024", tree) is False


def test_every_descendant_and_self_is_rejected(tree):
    for target in ("projects", "2024", "q1", "week1"):
        assert validate_move(tree["projects"], target, tree) is False
    for target in ("q1", "week1"):
        assert validate_move(tree["2024"], target, tree) is False


def test_move_to_current_parent_is_a_rejected_noop(tree):
    assert validate_move(tree["q1"], "2024", tree) is False
    # 根级节点移动到根级同样是原地
    assert validate_move(tree["archive"], None, tree) is False


def test_legal_moves_are_accepted(tree):
    assert validate_move(tree["q1"], "archive", tree) is True
    assert validate_move(tree["week1"], None, tree) is True
    assert validate_move(tree["archive"], "week1", tree) is True


def test_files_can_move_between_folders(tree):
    report = FileNode(id="report", name="report.pdf", is_folder=False, parent_folder_id="q1")
    assert validate_move(report, "archive", tree) is True
    assert validate_move(report, "q1", tree) is False


def test_dangling_parent_reference_terminates_walk():
    nodes = {"lost": _folder("lost", "missing-id")}
    assert validate_move(_folder("other"), "lost", nodes) is True


def test_cyclic_input_does_not_loop_forever():
    nodes = {"a": _folder("a", "b"), "b": _folder("b", "a")}
    assert validate_move(_folder("c"), "a", nodes) is True


def test_accepts_plain_iterable_of_folders(tree):
    assert validate_move(tree["projects"], "week1", list(tree.values())) is False
