from feishu_bridge.channels.feishu.elements import Table, TextBlock
from feishu_bridge.channels.feishu.markdown import compile_markdown, downgrade_headings

TABLE_MD = """## 4. Data
| Module | Status | Coverage |
| :--- | :--- | :--- |
| Core | ✅ Pass | 98% |
| Feishu | ⚠️ Warn | 85% |
| WhatsApp | ❌ Fail | 40% |
trailing text"""


def test_table_between_text_blocks() -> None:
    elements = compile_markdown(TABLE_MD)
    assert [type(el) for el in elements] == [TextBlock, Table, TextBlock]
    assert elements[0] == TextBlock("## 4. Data")
    assert elements[2] == TextBlock("trailing text")

    table = elements[1]
    assert isinstance(table, Table)
    assert [(c.key, c.display_name) for c in table.columns] == [
        ("col_0", "Module"),
        ("col_1", "Status"),
        ("col_2", "Coverage"),
    ]
    assert table.rows[0] == {"col_0": "Core", "col_1": "✅ Pass", "col_2": "98%"}
    assert len(table.rows) == 3
    assert table.page_size == 3


def test_table_without_rows_has_zero_page_size() -> None:
    elements = compile_markdown("| a | b |\n|---|---|")
    assert len(elements) == 1
    table = elements[0]
    assert isinstance(table, Table)
    assert table.rows == []
    assert table.page_size == 0


def test_page_size_is_capped_at_ten() -> None:
    rows = "\n".join(f"| r{i} | {i} |" for i in range(25))
    elements = compile_markdown(f"| name | n |\n| --- | --- |\n{rows}")
    table = elements[0]
    assert isinstance(table, Table)
    assert len(table.rows) == 25
    assert table.page_size == 10


def test_extra_cells_dropped_and_short_rows_leave_columns_absent() -> None:
    md = "| a | b |\n|---|---|\n| 1 | 2 | 3 |\n| only |"
    table = compile_markdown(md)[0]
    assert isinstance(table, Table)
    assert table.rows == [{"col_0": "1", "col_1": "2"}, {"col_0": "only"}]


def test_header_without_reachable_separator_is_text() -> None:
    md = "| not | a table |\nplain line"
    assert compile_markdown(md) == [TextBlock("| not | a table |\nplain line")]


def test_separator_not_starting_with_pipe_folds_back_to_text() -> None:
    md = "| a | b |\n---|---\n| 1 | 2 |"
    elements = compile_markdown(md)
    assert all(isinstance(el, TextBlock) for el in elements)
    assert "| a | b |" in elements[0].content


def test_header_with_no_names_is_text() -> None:
    md = "| | |\n|---|---|\n| 1 | 2 |"
    elements = compile_markdown(md)
    assert len(elements) == 1
    assert isinstance(elements[0], TextBlock)


def test_table_ends_at_first_non_pipe_line() -> None:
    md = "| h |\n|---|\n| 1 |\n\n| 2 |"
    elements = compile_markdown(md)
    table = elements[0]
    assert isinstance(table, Table)
    assert table.rows == [{"col_0": "1"}]
    assert elements[1] == TextBlock("| 2 |")



def test_indented_pipe_lines_stay_text() -> None:
    md = "- item\n  | a |\n  |---|\n  | 1 |"
    assert compile_markdown(md) == [TextBlock(md)]


def test_two_tables_keep_source_order() -> None:
    md = "intro\n| a |\n|---|\n| 1 |\nmiddle\n| b |\n|---|\n| 2 |"
    kinds = [type(el).__name__ for el in compile_markdown(md)]
    assert kinds == ["TextBlock", "Table", "TextBlock", "Table"]


def test_deep_headings_downgraded_to_level_two() -> None:
    md = "# One\n## Two\n### Three\n###### Six\nbody"
    (block,) = compile_markdown(md)
    assert block == TextBlock("# One\n## Two\n## Three\n## Six\nbody")


def test_heading_downgrade_is_idempotent() -> None:
    once = downgrade_headings("### Deep\n## Already")
    assert once == "## Deep\n## Already"
    assert downgrade_headings(once) == once


def test_heading_downgrade_not_applied_to_table_cells() -> None:
    md = "| ### cell |\n|---|\n| ### value |"
    table = compile_markdown(md)[0]
    assert isinstance(table, Table)
    assert table.columns[0].display_name == "### cell"
    assert table.rows[0] == {"col_0": "### value"}


def test_fenced_code_is_left_alone() -> None:
    md = "```python\n### not a heading\n| a |\n|---|\n```"
    (block,) = compile_markdown(md)
    assert isinstance(block, TextBlock)
    assert "### not a heading" in block.content
    assert "|---|" in block.content


def test_empty_input_yields_no_elements() -> None:
    assert compile_markdown("") == []
    assert compile_markdown("\n\n   \n") == []
