from __future__ import annotations

import json
from pathlib import Path

import pytest

from deck_analyzer.core.errors import ReplyParseError
from deck_analyzer.models import MediaAsset, MediaKind
from deck_analyzer.services.replies import (
    PARSE_FAILURE,
    load_json_object,
    parse_document_reply,
    parse_image_reply,
    parse_video_reply,
)

IMAGE = MediaAsset(filename="image1.png", kind=MediaKind.IMAGE, path=Path("image1.png"), owning_slide_index=2)
VIDEO = MediaAsset(filename="media1.mp4", kind=MediaKind.VIDEO, path=Path("media1.mp4"))


def test_load_json_object_accepts_fenced_and_embedded_json():
    assert load_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert load_json_object('Here you go: {"a": {"b": 2}} hope it helps') == {"a": {"b": 2}}
    with pytest.raises(ReplyParseError):
        load_json_object("no json at all")
    with pytest.raises(ReplyParseError):
        load_json_object("[1, 2, 3]")


def test_image_reply_is_parsed():
    raw = json.dumps(
        {"extractedText": "Revenue 2024", "description": "A bar chart", "language": "en", "confidence": "high"}
    )
    result = parse_image_reply(IMAGE, raw)

    assert result.extracted_text == "Revenue 2024"
    assert result.description == "A bar chart"
    assert result.confidence == "high"
    assert result.owning_slide_index == 2
    assert result.error is None


def test_unparsable_image_reply_keeps_raw_text():
    result = parse_image_reply(IMAGE, "The image shows the word HELLO")

    assert result.extracted_text == "The image shows the word HELLO"
    assert result.error == PARSE_FAILURE


def test_image_reply_with_wrong_shape_is_soft_failure():
    result = parse_image_reply(IMAGE, '{"extractedText": {"nested": true}}')
    assert result.error == PARSE_FAILURE


def test_video_reply_is_parsed():
    raw = json.dumps(
        {
            "audioTranscription": "Welcome to the demo",
            "visualDescription": "A person talks",
            "scenes": [{"startTime": "00:00.000", "endTime": "00:04.000", "description": "Intro", "spokenText": "Welcome"}],
            "language": "en",
            "overallSummary": "Product demo",
        }
    )
    result = parse_video_reply(VIDEO, raw)

    assert result.transcription == "Welcome to the demo"
    assert result.description == "Product demo"
    assert result.scenes[0].start_time == "00:00.000"
    assert result.scenes[0].spoken_text == "Welcome"
    assert result.owning_slide_index == "unknown"


def test_video_transcription_is_never_null():
    assert parse_video_reply(VIDEO, '{"visualDescription": "silent"}').transcription == ""
    broken = parse_video_reply(VIDEO, "garbage")
    assert broken.transcription == "garbage"
    assert broken.error == PARSE_FAILURE


def test_document_reply_fills_dense_pages():
    raw = json.dumps(
        {
            "pages": [
                {"pageNumber": 3, "extractedText": "Three", "visualElements": {"description": "chart"}},
                {"pageNumber": 1, "extractedText": "One", "title": "Intro", "bulletPoints": ["a", "b"]},
                {"pageNumber": 1, "extractedText": "duplicate"},
                {"pageNumber": 7, "extractedText": "out of range"},
            ]
        }
    )
    pages, warning = parse_document_reply(raw, 3)

    assert [p.page_number for p in pages] == [1, 2, 3]
    assert pages[0].extracted_text == "One"
    assert pages[0].bullet_points == ["a", "b"]
    assert pages[1].extracted_text == ""
    assert pages[2].visual_element_summary == "chart"
    assert warning == "Document reply covered 2 of 3 page(s)"


def test_document_reply_single_object_is_page_one():
    pages, warning = parse_document_reply('{"extractedText": "Only slide", "keyTopics": ["x"]}', 1)
    assert pages[0].extracted_text == "Only slide"
    assert pages[0].key_topics == ["x"]
    assert warning is None


def test_unparsable_document_reply_goes_to_page_one():
    pages, warning = parse_document_reply("Slide 1 says hello", 2)

    assert pages[0].extracted_text == "Slide 1 says hello"
    assert pages[1].extracted_text == ""
    assert warning == PARSE_FAILURE
