"""Subtitle generation for burned-in captions.

Produces either plain SRT (``simple`` style) or styled ASS scoped to a single
clip's local timeline.
"""
import enum
from dataclasses import dataclass
from typing import List

from clipsmith.pipeline.transcript import TranscriptSegment


class CaptionStyleName(str, enum.Enum):
    """Caption presets exposed to clients."""
    SIMPLE = "simple"
    CLASSIC = "classic"
    BOLD = "bold"
    MINIMAL = "minimal"
    KARAOKE = "karaoke"


@dataclass(frozen=True)
class CaptionStyle:
    """Visual parameters for an ASS subtitle style."""
    font_name: str = "Arial"
    font_size: int = 48
    font_color: str = "#FFFFFF"
    highlight_color: str = "#FFD700"
    background_color: str = "#00000080"
    position: str = "bottom"  # bottom, center, top
    bold: bool = True
    outline: int = 2
    shadow: int = 1
    karaoke: bool = False


CAPTION_PRESETS = {
    CaptionStyleName.CLASSIC: CaptionStyle(),
    CaptionStyleName.BOLD: CaptionStyle(font_name="Arial Black", font_size=64, outline=4, shadow=2),
    CaptionStyleName.MINIMAL: CaptionStyle(font_size=40, bold=False, outline=1, shadow=0),
    CaptionStyleName.KARAOKE: CaptionStyle(font_size=56, outline=3, position="center", karaoke=True),
}

_ALIGNMENT = {"bottom": 2, "center": 5, "top": 8}


def clip_local_segments(
    segments: List[TranscriptSegment],
    clip_start: float,
    clip_end: float,
) -> List[TranscriptSegment]:
    """
    Map transcript segments onto a clip's own timeline.

    Segments outside [clip_start, clip_end) are dropped; the rest are shifted
    by -clip_start and clamped to the clip's duration.
    """
    duration = clip_end - clip_start
    local = []
    for seg in segments:
        if not seg.overlaps(clip_start, clip_end) or not seg.text.strip():
            continue
        start = max(0.0, seg.start - clip_start)
        end = min(duration, seg.end - clip_start)
        local.append(TranscriptSegment(index=len(local), start=start, end=end, text=seg.text.strip()))
    return local


def format_srt_time(seconds: float) -> str:
    total_ms = int(round(max(0.0, seconds) * 1000))
    h, rem = divmod(total_ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms = divmod(rem, 1000)
    return f"{h:02d}:{m:02d}:{s:02d},{ms:03d}"


def format_ass_time(seconds: float) -> str:
    total_cs = int(round(max(0.0, seconds) * 100))
    h, rem = divmod(total_cs, 360_000)
    m, rem = divmod(rem, 6000)
    s, cs = divmod(rem, 100)
    return f"{h}:{m:02d}:{s:02d}.{cs:02d}"


def hex_to_ass(color: str) -> str:
    """Convert #RRGGBB or #RRGGBBAA (CSS alpha) to ASS &HAABBGGRR."""
    clean = color.lstrip("#")
    if len(clean) not in (6, 8):
        raise ValueError(f"Invalid colour: {color}")
    r, g, b = clean[0:2], clean[2:4], clean[4:6]
    # ASS alpha is inverted: 00 is opaque
    alpha = 255 - int(clean[6:8], 16) if len(clean) == 8 else 0
    return f"&H{alpha:02X}{b}{g}{r}".upper()


def generate_srt(segments: List[TranscriptSegment]) -> str:
    """Plain timed-text subtitles for already clip-local segments."""
    blocks = []
    for counter, seg in enumerate(segments, start=1):
        blocks.append(
            f"{counter}\n"
            f"{format_srt_time(seg.start)} --> {format_srt_time(seg.end)}\n"
            f"{seg.text}\n"
        )
    return "\n".join(blocks)


def _karaoke_text(seg: TranscriptSegment) -> str:
    words = seg.text.split()
    if not words:
        return ""
    per_word_cs = max(1, int(round(seg.duration * 100 / len(words))))
    return " ".join(f"{{\\k{per_word_cs}}}{word}" for word in words)


def generate_ass(
    segments: List[TranscriptSegment],
    style: CaptionStyle,
    video_width: int = 1080,
    video_height: int = 1920,
) -> str:
    """Styled subtitles for already clip-local segments."""
    alignment = _ALIGNMENT.get(style.position, 2)
    margin_v = 150 if style.position in ("bottom", "top") else 10
    # ASS karaoke sweeps from SecondaryColour to PrimaryColour
    primary = hex_to_ass(style.highlight_color if style.karaoke else style.font_color)
    secondary = hex_to_ass(style.font_color) if style.karaoke else "&H000000FF"

    lines = [
        "[Script Info]",
        "Title: Clipsmith Captions",
        "ScriptType: v4.00+",
        "WrapStyle: 0",
        f"PlayResX: {video_width}",
        f"PlayResY: {video_height}",
        "ScaledBorderAndShadow: yes",
        "",
        "[V4+ Styles]",
        "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, "
        "BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, "
        "BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding",
        f"Style: Default,{style.font_name},{style.font_size},{primary},{secondary},"
        f"&H00000000,{hex_to_ass(style.background_color)},{-1 if style.bold else 0},0,0,0,"
        f"100,100,0,0,1,{style.outline},{style.shadow},{alignment},40,40,{margin_v},1",
        "",
        "[Events]",
        "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text",
    ]

    for seg in segments:
        text = _karaoke_text(seg) if style.karaoke else seg.text.replace("\n", "\\N")
        lines.append(
            f"Dialogue: 0,{format_ass_time(seg.start)},{format_ass_time(seg.end)},"
            f"Default,,0,0,0,,{text}"
        )

    return "\n".join(lines) + "\n"


def build_subtitles(
    segments: List[TranscriptSegment],
    style_name: str,
    video_width: int,
    video_height: int,
):
    """
    Render clip-local segments in the format the style calls for.

    Returns:
        Tuple of (file extension, subtitle text)
    """
    name = CaptionStyleName(style_name)
    if name == CaptionStyleName.SIMPLE:
        return "srt", generate_srt(segments)
    return "ass", generate_ass(segments, CAPTION_PRESETS[name], video_width, video_height)
