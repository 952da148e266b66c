"""
Tests for StreamFilter.
"""

import pytest

from llama_chat_lite.chat.stream_filter import StreamFilter

LLAMA3_TOKENS = (
    "<|begin_of_text|>",
    "<|end_of_text|>",
    "<|start_header_id|>",
    "<|end_header_id|>",
    "<|eot_id|>",
)


def _run(control_tokens, fragments):
    stream_filter = StreamFilter(control_tokens)
    out = [stream_filter.feed(f) for f in fragments]
    out.append(stream_filter.flush())
    return "".join(out)


def _strip(text, control_tokens):
    for token in sorted(control_tokens, key=len, reverse=True):
        text = text.replace(token, "")
    return text


@pytest.mark.unit
def test_plain_text_passes_through():
    stream_filter = StreamFilter(LLAMA3_TOKENS)
    assert stream_filter.feed("Hello") == "Hello"
    assert stream_filter.feed(", world") == ", world"
    assert stream_filter.flush() == ""


@pytest.mark.unit
def test_whole_token_removed():
    assert _run(LLAMA3_TOKENS, ["4", "<|eot_id|>"]) == "4"


@pytest.mark.unit
@pytest.mark.parametrize(
    "text",
    [
        "Hi<|eot_id|>",
        "a<|start_header_id|>assistant<|end_header_id|>b",
        "<|begin_of_text|><|eot_id|>x<|end_of_text|>",
        "x <| not a token |> y",
        "<<|eot_id|>|>",
    ],
)
def test_every_split_point(text):
    expected = _strip(text, LLAMA3_TOKENS)
    for cut in range(len(text) + 1):
        assert _run(LLAMA3_TOKENS, [text[:cut], text[cut:]]) == expected


@pytest.mark.unit
def test_character_by_character():
    text = "The answer<|eot_id|> is <|end_of_text|>4"
    assert _run(LLAMA3_TOKENS, list(text)) == "The answer is 4"


@pytest.mark.unit
def test_holds_back_only_possible_prefix():
    stream_filter = StreamFilter(LLAMA3_TOKENS)

    assert stream_filter.feed("abc<|eo") == "abc"
    assert stream_filter.pending == "<|eo"

    assert stream_filter.feed("x") == "<|eox"
    assert stream_filter.pending == ""


@pytest.mark.unit
def test_flush_releases_incomplete_prefix():
    stream_filter = StreamFilter(LLAMA3_TOKENS)
    assert stream_filter.feed("tail <|") == "tail "
    assert stream_filter.flush() == "<|"
    assert stream_filter.pending == ""


@pytest.mark.unit
def test_overlapping_token_names():
    tokens = ("<|im_start|>", "<|im_end|>", "<|endoftext|>")
    assert _run(tokens, ["<|im_", "end|>", "ok<|im_", "start|>"]) == "ok"
    assert _run(tokens, ["<|im_", "e", "x"]) == "<|im_ex"


@pytest.mark.unit
def test_reset_discards_pending():
    stream_filter = StreamFilter(LLAMA3_TOKENS)
    stream_filter.feed("<|eot")
    stream_filter.reset()
    assert stream_filter.flush() == ""


@pytest.mark.unit
def test_no_control_tokens():
    stream_filter = StreamFilter([])
    assert stream_filter.feed("<|eot_id|>") == "<|eot_id|>"
    assert stream_filter.flush() == ""


@pytest.mark.unit
def test_empty_fragment():
    assert StreamFilter(LLAMA3_TOKENS).feed("") == ""


@pytest.mark.unit
def test_removal_is_single_pass():
    # Text around a removed token is not rescanned, matching str.replace
    text = "<|eo<|eot_id|>t_id|>done"
    expected = "<|eot_id|>done"
    assert _run(LLAMA3_TOKENS, [text]) == expected
    assert _run(LLAMA3_TOKENS, list(text)) == expected
    for cut in range(len(text) + 1):
        assert _run(LLAMA3_TOKENS, [text[:cut], text[cut:]]) == expected
