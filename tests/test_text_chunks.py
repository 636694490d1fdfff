import pytest

from hypermem.services.text_chunks import chunk_text, extract_keywords

SAMPLE = (
    "Hypergraphs generalize graphs. An edge may join any number of nodes!\n"
    "Memories decay over time, unless they are recalled. Is that useful? "
    "It keeps the store small and the prompts relevant.\n\n"
    "Feeds and documents are chunked before they are stored, so that each memory "
    "stays readable on its own and fits comfortably into a prompt. "
) * 12


def _gaps_between(chunks, source):
    gaps = []
    cursor = 0
    for chunk in chunks:
        index = source.index(chunk, cursor)
        gaps.append(source[cursor:index])
        cursor = index + len(chunk)
    gaps.append(source[cursor:])
    return gaps


@pytest.mark.parametrize("max_length", [40, 120, 500, 1500])
def test_chunks_rejoin_to_original(max_length):
    chunks = chunk_text(SAMPLE, max_length)

    assert all(chunks)
    assert all(len(chunk) <= max_length for chunk in chunks)
    assert all(chunk == chunk.strip() for chunk in chunks)
    assert all(gap.strip() == "" for gap in _gaps_between(chunks, SAMPLE))


def test_short_text_is_single_chunk():
    assert chunk_text("  just one line  ", 100) == ["just one line"]
    assert chunk_text("", 100) == []
    assert chunk_text("   \n  ", 100) == []


def test_prefers_newline_then_sentence_then_space():
    text = "a" * 60 + "\n" + "b" * 60
    assert chunk_text(text, 100) == ["a" * 60, "b" * 60]

    text = "First sentence here. " + "x" * 30 + " and more words follow here"
    chunks = chunk_text(text, 40)
    assert chunks[0] == "First sentence here."

    text = "alpha beta gamma delta epsilon zeta eta theta"
    chunks = chunk_text(text, 20)
    assert chunks[0] == "alpha beta gamma"


def test_early_boundaries_are_ignored():
    text = "ab. " + "c" * 200
    chunks = chunk_text(text, 100)
    assert chunks[0] == ("ab. " + "c" * 96)
    assert len(chunks[0]) == 100


def test_extract_keywords():
    text = "Hey <@123456> check https://example.com/x - the Rust compiler is FAST, rust compiler rocks!"
    assert extract_keywords(text) == ["hey", "check", "rust", "compiler", "fast"]
    assert extract_keywords(text, limit=2) == ["hey", "check"]
    assert extract_keywords("I am so very happy to be here") == ["happy"]
    assert extract_keywords("") == []
