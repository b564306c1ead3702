"""Tests for caption scoping and subtitle generation."""
import pytest

from clipsmith.pipeline.captions import (
    CAPTION_PRESETS,
    CaptionStyleName,
    build_subtitles,
    clip_local_segments,
    format_ass_time,
    format_srt_time,
    generate_ass,
    generate_srt,
    hex_to_ass,
)
from clipsmith.pipeline.transcript import TranscriptSegment


def _seg(index, start, end, text):
    return TranscriptSegment(index=index, start=start, end=end, text=text)


class TestClipLocalSegments:
    def test_shifts_clamps_and_discards(self):
        segments = [
            _seg(0, 0.0, 8.0, "before"),
            _seg(1, 8.0, 12.0, "straddles start"),
            _seg(2, 15.0, 20.0, "inside"),
            _seg(3, 28.0, 35.0, "straddles end"),
            _seg(4, 40.0, 45.0, "after"),
        ]

        local = clip_local_segments(segments, clip_start=10.0, clip_end=30.0)

        assert [(s.start, s.end, s.text) for s in local] == [
            (0.0, 2.0, "straddles start"),
            (5.0, 10.0, "inside"),
            (18.0, 20.0, "straddles end"),
        ]
        assert [s.index for s in local] == [0, 1, 2]

    def test_touching_segments_are_outside(self):
        segments = [_seg(0, 0.0, 10.0, "ends at start"), _seg(1, 30.0, 40.0, "starts at end")]
        assert clip_local_segments(segments, 10.0, 30.0) == []

    def test_blank_segments_are_dropped(self):
        assert clip_local_segments([_seg(0, 10.0, 12.0, "   ")], 0.0, 30.0) == []


class TestTimeFormats:
    def test_srt_time(self):
        assert format_srt_time(0) == "00:00:00,000"
        assert format_srt_time(3661.5) == "01:01:01,500"

    def test_ass_time(self):
        assert format_ass_time(0) == "0:00:00.00"
        assert format_ass_time(3661.5) == "1:01:01.50"


class TestHexToAss:
    def test_opaque_colour_is_reordered(self):
        assert hex_to_ass("#FFFFFF") == "&H00FFFFFF"
        assert hex_to_ass("#FF8000") == "&H000080FF"

    def test_css_alpha_is_inverted(self):
        assert hex_to_ass("#00000080") == "&H7F000000"
        assert hex_to_ass("#000000FF") == "&H00000000"

    def test_invalid_colour(self):
        with pytest.raises(ValueError):
            hex_to_ass("#FFF")


class TestSubtitleFiles:
    def test_generate_srt(self):
        srt = generate_srt([_seg(0, 0.0, 1.5, "Hello"), _seg(1, 1.5, 3.0, "world")])
        assert srt == (
            "1\n00:00:00,000 --> 00:00:01,500\nHello\n"
            "\n"
            "2\n00:00:01,500 --> 00:00:03,000\nworld\n"
        )

    def test_generate_ass_uses_frame_size_and_position(self):
        style = CAPTION_PRESETS[CaptionStyleName.CLASSIC]
        ass = generate_ass([_seg(0, 0.0, 2.0, "Hello there")], style, 1080, 1920)

        assert "PlayResX: 1080" in ass
        assert "PlayResY: 1920" in ass
        assert "Style: Default,Arial,48,&H00FFFFFF" in ass
        assert ",2,40,40,150,1" in ass
        assert "Dialogue: 0,0:00:00.00,0:00:02.00,Default,,0,0,0,,Hello there" in ass

    def test_karaoke_adds_word_timing(self):
        style = CAPTION_PRESETS[CaptionStyleName.KARAOKE]
        ass = generate_ass([_seg(0, 0.0, 2.0, "one two")], style, 1080, 1080)
        assert "{\\k100}one {\\k100}two" in ass
        assert ",5,40,40,10,1" in ass

    def test_build_subtitles_picks_format(self):
        segments = [_seg(0, 0.0, 1.0, "hi")]
        assert build_subtitles(segments, "simple", 1080, 1920)[0] == "srt"
        for style in ("classic", "bold", "minimal", "karaoke"):
            assert build_subtitles(segments, style, 1080, 1920)[0] == "ass"

    def test_unknown_style(self):
        with pytest.raises(ValueError):
            build_subtitles([], "comic-sans", 1080, 1920)
