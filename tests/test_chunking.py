import pytest

from discovery.parse.chunking import Section, chunk_document, pack_sections, split_by_headings


def test_rejects_tiny_budget():
    with pytest.raises(ValueError):
        chunk_document("# Title", max_chars=63)


def test_empty_document():
    assert chunk_document("   \n") == []


def test_small_document_is_one_chunk():
    text = "Intro line\n\n# Companies\n\n- Acme\n\n## Toronto\n\n- Beta"
    assert chunk_document(text, max_chars=1000) == [text]


def test_preamble_becomes_its_own_section():
    sections = split_by_headings("Welcome to the list\n\n# Companies\n\n- Acme", 1000)
    assert sections[0] == Section(level=0, heading="", content="Welcome to the list")
    assert sections[1].level == 1
    assert sections[1].heading == "# Companies"


def test_every_chunk_respects_budget():
    parts = ["Preamble " * 30]
    for index in range(12):
        parts.append(f"## Section {index}\n\n" + ("company listing " * (index * 7 + 1)))
    text = "\n\n".join(parts)
    chunks = chunk_document(text, max_chars=200)
    assert len(chunks) > 1
    assert all(len(chunk) <= 200 for chunk in chunks)


def test_oversized_section_repeats_heading():
    text = "## Big\n\n" + "x" * 1000
    chunks = chunk_document(text, max_chars=200)
    assert all(chunk.startswith("## Big\n\n") for chunk in chunks)
    assert sum(chunk.count("x") for chunk in chunks) == 1000


def test_long_headings_are_truncated():
    sections = split_by_headings("# " + "H" * 300 + "\n\nbody", 100)
    assert all(len(section.heading) <= 50 for section in sections)
    assert all(len(section.render()) <= 100 for section in sections)


def test_pack_sections_is_greedy():
    sections = [Section(2, "## A", "a" * 20), Section(2, "## B", "b" * 20), Section(2, "## C", "c" * 50)]
    chunks = pack_sections(sections, max_chars=64)
    assert chunks == ["## A\n\n" + "a" * 20 + "\n\n## B\n\n" + "b" * 20, "## C\n\n" + "c" * 50]
