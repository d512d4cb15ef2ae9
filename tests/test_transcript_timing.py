from app.voice_coach.transcript_timing import (
    estimate_duration_from_size,
    estimate_duration_from_transcript,
    find_key_moment_timestamp,
    format_timestamp,
    score_line,
)


def test_format_timestamp_pads_seconds():
    assert format_timestamp(410) == "6:50"
    assert format_timestamp(65) == "1:05"
    assert format_timestamp(-3) == "0:00"


def test_score_line_counts_overlapping_keywords():
    # "concerns" also contains "concern"
    assert score_line("We have concerns about the price") == 3
    assert score_line("Sounds great, talk soon") == 0


def test_key_moment_picks_highest_scoring_middle_line():
    transcript = "\n".join(
        [
            "[01:00] Rep: our price is fair",
            "[05:00] Prospect: one problem we had",
            "[08:20] Prospect: we have concerns about the price and budget",
            "[14:00] Prospect: any discount on pricing for a deal?",
        ]
    )
    assert find_key_moment_timestamp(transcript, 900) == 500


def test_key_moment_ties_keep_first_line():
    transcript = "[04:00] the price\n[06:00] the budget"
    assert find_key_moment_timestamp(transcript, 900) == 240


def test_key_moment_ignores_opener_and_close_windows():
    transcript = "[02:00] price budget cost\n[13:00] price budget cost"
    assert find_key_moment_timestamp(transcript, 900) is None


def test_key_moment_requires_line_prefix():
    transcript = "Prospect said [08:20] price is too expensive"
    assert find_key_moment_timestamp(transcript, 900) is None


def test_key_moment_none_without_keywords():
    transcript = "[05:00] hello there\n[07:00] how are you"
    assert find_key_moment_timestamp(transcript, 900) is None


def test_duration_from_transcript_adds_buffer():
    assert estimate_duration_from_transcript("[01:00] a\n[12:05] b\n[03:00] c") == 755


def test_duration_from_transcript_without_markers():
    assert estimate_duration_from_transcript("no timestamps here") == 0
    assert estimate_duration_from_transcript("") == 0


def test_duration_from_size_uses_format_bitrate():
    assert estimate_duration_from_size(16_000_000, "mp3") == 1000
    assert estimate_duration_from_size(1_764_000, "wav") == 10
    assert estimate_duration_from_size(0, "mp3") == 0
