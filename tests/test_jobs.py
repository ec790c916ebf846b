import pytest

from rsizevideo.errors import ValidationError
from rsizevideo.jobs import output_filename, parse_target_size


@pytest.mark.parametrize(
    "name,expected",
    [
        ("clip.mp4", "clip-rsizevideo-com.mp4"),
        ("holiday.MOV", "holiday-rsizevideo-com.mp4"),
        ("clip-rsizevideo-com.mp4", "clip-rsizevideo-com.mp4"),
        ("My RsizeVideo take.mp4", "My RsizeVideo take.mp4"),
        ("C:\\Users\\me\\clip.avi", "clip-rsizevideo-com.mp4"),
        ("../../etc/passwd", "passwd-rsizevideo-com.mp4"),
        (".mp4", "mp4-rsizevideo-com.mp4"),
        ("", "video-rsizevideo-com.mp4"),
    ],
)
def test_output_filename(name, expected):
    assert output_filename(name) == expected


def test_parse_target_size():
    assert parse_target_size("25") == 25.0
    assert parse_target_size(" 7.5 ") == 7.5
    for bad in (None, "", "  "):
        with pytest.raises(ValidationError, match="required"):
            parse_target_size(bad)
    for bad in ("abc", "0", "-3", "nan", "inf"):
        with pytest.raises(ValidationError):
            parse_target_size(bad)
