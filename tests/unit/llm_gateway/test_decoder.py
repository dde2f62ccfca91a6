"""
Unit tests for response decoding.
"""

from pydantic import BaseModel

from llm_gateway import EMPTY_RESPONSE, decode_model, extract_image_url, extract_json, extract_text


class Verdict(BaseModel):
    label: str
    score: int


class TestExtractText:
    """Test cases for chat envelope text extraction."""

    def test_first_choice_content(self) -> None:
        envelope = {
            "choices": [
                {"message": {"role": "assistant", "content": "first"}},
                {"message": {"role": "assistant", "content": "second"}},
            ]
        }
        assert extract_text(envelope) == "first"

    def test_missing_or_empty_content_is_sentinel(self) -> None:
        assert extract_text({}) == EMPTY_RESPONSE
        assert extract_text({"choices": []}) == EMPTY_RESPONSE
        assert extract_text({"choices": [{}]}) == EMPTY_RESPONSE
        assert extract_text({"choices": [{"message": {"content": ""}}]}) == EMPTY_RESPONSE
        assert extract_text({"choices": [{"message": {"content": None}}]}) == EMPTY_RESPONSE

    def test_error_envelope_is_sentinel(self) -> None:
        assert extract_text({"error": {"message": "model overloaded"}}) == EMPTY_RESPONSE

    def test_malformed_envelopes_never_raise(self) -> None:
        assert extract_text(None) == EMPTY_RESPONSE
        assert extract_text("text") == EMPTY_RESPONSE
        assert extract_text({"choices": "nope"}) == EMPTY_RESPONSE
        assert extract_text({"choices": ["nope"]}) == EMPTY_RESPONSE
        assert extract_text({"choices": [{"message": {"content": [{"type": "text", "text": None}]}}]}) == EMPTY_RESPONSE
        assert extract_text({"choices": [{"message": {"content": [{"type": "text", "text": 42}]}}]}) == EMPTY_RESPONSE

    def test_non_string_parts_are_skipped(self) -> None:
        envelope = {
            "choices": [
                {"message": {"content": [{"type": "text", "text": None}, {"type": "text", "text": "kept"}]}}
            ]
        }
        assert extract_text(envelope) == "kept"

    def test_list_content_is_flattened(self) -> None:
        envelope = {
            "choices": [
                {
                    "message": {
                        "content": [
                            {"type": "text", "text": "Hello "},
                            {"type": "image_url", "image_url": {"url": "x"}},
                            {"type": "text", "text": "world"},
                        ]
                    }
                }
            ]
        }
        assert extract_text(envelope) == "Hello world"


class TestExtractImageUrl:
    """Test cases for image envelope URL extraction."""

    def test_first_url(self) -> None:
        assert extract_image_url({"data": [{"url": "https://x/1.png"}, {"url": "https://x/2.png"}]}) == "https://x/1.png"

    def test_missing_url(self) -> None:
        assert extract_image_url({}) is None
        assert extract_image_url({"data": []}) is None
        assert extract_image_url({"data": [{"b64_json": "AAAA"}]}) is None
        assert extract_image_url({"data": [{"url": ""}]}) is None
        assert extract_image_url(None) is None


class TestExtractJson:
    """Test cases for best-effort JSON extraction."""

    def test_fenced_block(self) -> None:
        assert extract_json('```json\n{"a":1}\n```') == {"a": 1}

    def test_bare_fence(self) -> None:
        assert extract_json('Here you go:\n```\n{"a": [1, 2]}\n```\nThanks') == {"a": [1, 2]}

    def test_plain_json(self) -> None:
        assert extract_json('{"a":1}') == {"a": 1}
        assert extract_json('  [1, 2, 3]  ') == [1, 2, 3]

    def test_json_inside_noise(self) -> None:
        assert extract_json('noise {"a":1} noise') == {"a": 1}

    def test_first_balanced_object_wins(self) -> None:
        text = 'first {"a": {"b": 2}} then {"c": 3}'
        assert extract_json(text) == {"a": {"b": 2}}

    def test_braces_inside_strings(self) -> None:
        text = 'result: {"note": "use } and { freely", "ok": true} done'
        assert extract_json(text) == {"note": "use } and { freely", "ok": True}

    def test_unbalanced_prefix_is_skipped(self) -> None:
        text = 'weird { prefix then {"a": 1}'
        assert extract_json(text) == {"a": 1}

    def test_broken_fence_falls_through_to_later_strategies(self) -> None:
        text = '```json\nnot valid\n``` but later {"a": 1}'
        assert extract_json(text) == {"a": 1}

    def test_fallback_returned_unchanged(self) -> None:
        fallback = {"category": "常规"}
        assert extract_json("not json at all", fallback) is fallback
        assert extract_json("", fallback) is fallback
        assert extract_json(None, fallback) is fallback
        assert extract_json("{broken", fallback) is fallback

    def test_default_fallback_is_none(self) -> None:
        assert extract_json("nothing here") is None


class TestDecodeModel:
    """Test cases for typed decoding."""

    def test_valid_reply(self) -> None:
        fallback = Verdict(label="unknown", score=0)
        result = decode_model('```json\n{"label": "good", "score": 9}\n```', Verdict, fallback)
        assert result == Verdict(label="good", score=9)

    def test_wrong_shape_returns_fallback(self) -> None:
        fallback = Verdict(label="unknown", score=0)
        assert decode_model('{"label": "good"}', Verdict, fallback) is fallback
        assert decode_model("[1, 2]", Verdict, fallback) is fallback
        assert decode_model("no json", Verdict, fallback) is fallback
