"""
Tests for the operation executor: dispatch, the capability boundary, and the catalog actions.
"""

import pytest

from backend import LocalFileSystem, MemoryFileSystem
from operations import CapabilityViolation, Operation, OperationKind, UnknownOperationError
from tools import EditorState, ReadOnlyFileSystem, execute_operation


def _read(action, **parameters):
    return Operation(kind=OperationKind.READ, action=action, parameters=parameters)


def _write(action, **parameters):
    return Operation(kind=OperationKind.WRITE, action=action, parameters=parameters)


@pytest.fixture
def fs():
    return MemoryFileSystem({
        "/main.tex": "\\documentclass{article}\n\\begin{document}\nHello\n\\end{document}\n",
        "/chapters/intro.tex": "\\section{Introduction}\nHello again\n",
        "/refs.bib": "@book{knuth, title={TeX}}\n",
    })


# ============================================================
# Capability boundary
# ============================================================

def test_read_type_with_write_action_is_a_violation(fs):
    with pytest.raises(CapabilityViolation):
        execute_operation(_read("create_file", file_path="/x.tex", content="x"), fs)
    assert not fs.exists("/x.tex")


def test_write_type_with_read_action_is_a_violation(fs):
    with pytest.raises(CapabilityViolation):
        execute_operation(_write("read_file", file_path="/main.tex"), fs)


def test_action_in_no_catalog_is_unknown(fs):
    with pytest.raises(UnknownOperationError):
        execute_operation(_read("compile_pdf"), fs)


def test_read_only_view_rejects_mutation(fs):
    view = ReadOnlyFileSystem(fs, "read_file")
    assert view.read_file("/main.tex").startswith("\\documentclass")
    with pytest.raises(CapabilityViolation):
        view.write_file("/main.tex", "")
    with pytest.raises(CapabilityViolation):
        view.rename("/main.tex", "/other.tex")


def test_complete_always_succeeds(fs):
    result = execute_operation(Operation(kind=OperationKind.COMPLETE, message="Done"), fs)
    assert result.success
    assert result.payload == {"message": "Done"}


# ============================================================
# Failures become results
# ============================================================

def test_missing_file_is_a_failed_result(fs):
    result = execute_operation(_read("read_file", file_path="/missing.tex"), fs)
    assert not result.success
    assert "Not found" in result.error
    assert result.kind == OperationKind.READ


def test_missing_required_parameter_is_a_failed_result(fs):
    result = execute_operation(_write("create_file", content="x"), fs)
    assert not result.success
    assert "file_path" in result.error


def test_empty_content_is_allowed_for_create(fs):
    result = execute_operation(_write("create_file", file_path="/empty.tex", content=""), fs)
    assert result.success
    assert fs.read_file("/empty.tex") == ""


def test_invalid_edit_type_is_a_failed_result(fs):
    result = execute_operation(_write("edit_file", file_path="/main.tex", content="x", edit_type="prepend"), fs)
    assert not result.success
    assert "edit_type" in result.error


def test_non_text_content_fails_without_touching_the_file(tmp_path):
    (tmp_path / "main.tex").write_text("original")
    local = LocalFileSystem(str(tmp_path))
    for action in ("edit_file", "create_file"):
        result = execute_operation(_write(action, file_path="/main.tex", content=["\\section{A}"]), local)
        assert not result.success
        assert "content" in result.error
    assert (tmp_path / "main.tex").read_text() == "original"


def test_non_text_edit_type_is_a_failed_result(fs):
    result = execute_operation(_write("edit_file", file_path="/main.tex", content="x", edit_type=["append"]), fs)
    assert not result.success
    assert "edit_type" in result.error
    assert fs.read_file("/main.tex").startswith("\\documentclass")


def test_malformed_read_parameters_are_failed_results(fs):
    for op in (
        _read("list_files", directory_path=7),
        _read("get_file_structure", max_depth="deep"),
        _read("search_in_files", query="Hello", file_pattern=["*.tex"]),
    ):
        result = execute_operation(op, fs)
        assert not result.success, op.action
        assert result.error


def test_move_file_onto_directory_fails(fs):
    result = execute_operation(_write("move_file", source_path="/refs.bib", target_path="/chapters"), fs)
    assert not result.success
    assert fs.read_file("/refs.bib").startswith("@book")
    assert fs.read_file("/chapters/intro.tex").startswith("\\section")


# ============================================================
# Write catalog
# ============================================================

def test_create_file_creates_parent_directories(fs):
    result = execute_operation(_write("create_file", file_path="/appendix/a/b.tex", content="\\section{B}"), fs)
    assert result.success
    assert fs.stat("/appendix/a").is_directory
    assert fs.read_file("/appendix/a/b.tex") == "\\section{B}"
    assert result.payload["content_length"] == len("\\section{B}")


def test_edit_file_replace_and_append(fs):
    execute_operation(_write("edit_file", file_path="/refs.bib", content="@misc{a}\n"), fs)
    assert fs.read_file("/refs.bib") == "@misc{a}\n"
    execute_operation(_write("edit_file", file_path="/refs.bib", content="@misc{b}\n", edit_type="append"), fs)
    assert fs.read_file("/refs.bib") == "@misc{a}\n@misc{b}\n"


def test_append_to_missing_file_creates_it(fs):
    result = execute_operation(_write("edit_file", file_path="/notes/todo.md", content="- x", edit_type="append"), fs)
    assert result.success
    assert fs.read_file("/notes/todo.md") == "- x"


def test_delete_file(fs):
    assert execute_operation(_write("delete_file", file_path="/refs.bib"), fs).success
    assert not fs.exists("/refs.bib")


def test_create_existing_directory_succeeds(fs):
    result = execute_operation(_write("create_directory", directory_path="/chapters"), fs)
    assert result.success


def test_delete_non_empty_directory_fails(fs):
    result = execute_operation(_write("delete_directory", directory_path="/chapters"), fs)
    assert not result.success
    assert fs.exists("/chapters/intro.tex")


def test_move_file_into_new_directory(fs):
    result = execute_operation(
        _write("move_file", source_path="/chapters/intro.tex", target_path="/parts/one/intro.tex"), fs
    )
    assert result.success
    assert not fs.exists("/chapters/intro.tex")
    assert fs.read_file("/parts/one/intro.tex").startswith("\\section")


def test_move_missing_source_fails(fs):
    result = execute_operation(_write("move_file", source_path="/nope.tex", target_path="/yes.tex"), fs)
    assert not result.success


# ============================================================
# Read catalog
# ============================================================

def test_read_file_normalizes_relative_path(fs):
    result = execute_operation(_read("read_file", file_path="chapters/intro.tex"), fs)
    assert result.success
    assert result.payload["file_path"] == "/chapters/intro.tex"


def test_list_files_root(fs):
    result = execute_operation(_read("list_files"), fs)
    entries = {e["name"]: e for e in result.payload["files"]}
    assert result.payload["directory_path"] == "/"
    assert entries["chapters"]["type"] == "directory"
    assert entries["main.tex"]["extension"] == "tex"


def test_get_current_file_without_open_file_fails(fs):
    result = execute_operation(_read("get_current_file"), fs, EditorState())
    assert not result.success


def test_get_current_file_returns_open_file(fs):
    result = execute_operation(_read("get_current_file"), fs, EditorState(current_file="/main.tex"))
    assert result.success
    assert result.payload["file_path"] == "/main.tex"
    assert result.payload["line_count"] == 5
