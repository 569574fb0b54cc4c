from podplayer.utils.audio_utils import AudioUtils


def test_format_duration():
    assert AudioUtils.format_duration(None) == "--:--"
    assert AudioUtils.format_duration(225) == "3:45"
    assert AudioUtils.format_duration(5025.6) == "1:23:45"


def test_parse_duration():
    assert AudioUtils.parse_duration("45") == 45
    assert AudioUtils.parse_duration("3:45") == 225
    assert AudioUtils.parse_duration("01:23:45") == 5025
    assert AudioUtils.parse_duration(12.7) == 12
    assert AudioUtils.parse_duration(None) is None
    assert AudioUtils.parse_duration(-5) is None
    assert AudioUtils.parse_duration("about an hour") is None
    assert AudioUtils.parse_duration("1:2:3:4") is None


def test_parse_pub_date():
    expected = 1704182400.0

    assert AudioUtils.parse_pub_date("Tue, 02 Jan 2024 08:00:00 +0000") == expected
    assert AudioUtils.parse_pub_date("Tue, 02 Jan 2024 09:00:00 +0100") == expected
    assert AudioUtils.parse_pub_date("2024-01-02T08:00:00Z") == expected
    assert AudioUtils.parse_pub_date("2024-01-02T08:00:00") == expected
    assert AudioUtils.parse_pub_date(1704182400) == expected


def test_parse_pub_date_invalid():
    assert AudioUtils.parse_pub_date(None) is None
    assert AudioUtils.parse_pub_date("") is None
    assert AudioUtils.parse_pub_date("last tuesday") is None
